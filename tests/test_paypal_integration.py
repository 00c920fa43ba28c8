import json
from unittest.mock import MagicMock

import pytest
import requests

from course_pay.exceptions import PaymentProviderError, WebhookVerificationError
from course_pay.models import PaymentStatus
from course_pay.paypal_integration import PayPalBilling

WEBHOOK_HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.paypal.com/v1/notifications/certs/CERT-1",
    "paypal-transmission-id": "b2384410-f8d2-11ea-a5a6-7b6c6a3c3e4e",
    "paypal-transmission-sig": "c2lnbmF0dXJl",
    "paypal-transmission-time": "2024-01-01T12:00:00Z",
}


def fake_response(payload=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    return response


def token_response():
    return fake_response({"access_token": "A21AA-token", "expires_in": 32400})


def paypal_order(status="COMPLETED", capture_status="COMPLETED", value="99.00"):
    order = {
        "id": "5O190127TN364715T",
        "status": status,
        "payer": {"payer_id": "QYR5Z8XDVJNXQ", "email_address": "buyer@example.com"},
        "purchase_units": [{"amount": {"currency_code": "USD", "value": value}}],
    }
    if capture_status:
        order["purchase_units"][0]["payments"] = {
            "captures": [{"id": "3C679366HH908993F", "status": capture_status}]
        }
    return order


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def billing(settings, session):
    return PayPalBilling(settings, session=session)


def test_get_order_completed(billing, session):
    session.post.return_value = token_response()
    session.get.return_value = fake_response(paypal_order())

    order = billing.get_order("5O190127TN364715T")

    assert order.succeeded
    assert order.amount == 9900
    assert order.currency == "usd"
    assert order.customer_email == "buyer@example.com"
    assert order.metadata["capture_id"] == "3C679366HH908993F"

    token_call = session.post.call_args
    assert token_call.args[0] == "https://api-m.sandbox.paypal.com/v1/oauth2/token"
    assert token_call.kwargs["auth"] == ("paypal-client", "paypal-secret")
    order_call = session.get.call_args
    assert order_call.args[0] == "https://api-m.sandbox.paypal.com/v2/checkout/orders/5O190127TN364715T"
    assert order_call.kwargs["headers"]["Authorization"] == "Bearer A21AA-token"


@pytest.mark.parametrize("order_status, capture_status, expected", [
    ("APPROVED", None, PaymentStatus.REQUIRES_ACTION),
    ("COMPLETED", "PENDING", PaymentStatus.PROCESSING),
    ("COMPLETED", "DECLINED", PaymentStatus.FAILED),
    ("VOIDED", None, PaymentStatus.CANCELED),
])
def test_get_order_only_completed_capture_succeeds(order_status, capture_status, expected, billing, session):
    session.post.return_value = token_response()
    session.get.return_value = fake_response(paypal_order(order_status, capture_status))

    order = billing.get_order("5O190127TN364715T")

    assert order.status == expected
    assert not order.succeeded


@pytest.mark.parametrize("purchase_units", [
    None,
    [],
    [{}],
    [{"amount": {"currency_code": "USD"}}],
    [{"amount": {"value": "99.00"}}],
    [{"amount": {"currency_code": "USD", "value": "abc"}}],
    [{"amount": {"currency_code": "USD", "value": "0.00"}}],
])
def test_get_order_without_usable_amount_is_not_verified(purchase_units, billing, session):
    order = paypal_order()
    order["purchase_units"] = purchase_units
    session.post.return_value = token_response()
    session.get.return_value = fake_response(order)

    with pytest.raises(PaymentProviderError, match="could not be verified"):
        billing.get_order("5O190127TN364715T")


def test_get_order_not_found_passes_paypal_message(billing, session):
    session.post.return_value = token_response()
    session.get.return_value = fake_response(
        {"name": "RESOURCE_NOT_FOUND", "message": "The specified resource does not exist."}, status_code=404
    )

    with pytest.raises(PaymentProviderError, match="does not exist"):
        billing.get_order("MISSING")


def test_token_failure_is_provider_error(billing, session):
    session.post.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(PaymentProviderError, match="authenticate"):
        billing.get_order("5O190127TN364715T")


def test_verify_webhook_success(billing, session):
    event = {"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {"id": "3C679366HH908993F"}}
    session.post.side_effect = [token_response(), fake_response({"verification_status": "SUCCESS"})]

    parsed = billing.verify_webhook(WEBHOOK_HEADERS, json.dumps(event).encode("utf-8"))

    assert parsed.provider == "paypal"
    assert parsed.type == "PAYMENT.CAPTURE.COMPLETED"
    assert parsed.resource["id"] == "3C679366HH908993F"

    verify_call = session.post.call_args_list[1]
    assert verify_call.args[0].endswith("/v1/notifications/verify-webhook-signature")
    body = verify_call.kwargs["json"]
    assert body["webhook_id"] == "WH-TEST-123"
    assert body["transmission_sig"] == "c2lnbmF0dXJl"
    assert body["webhook_event"] == event


def test_verify_webhook_failure_status(billing, session):
    session.post.side_effect = [token_response(), fake_response({"verification_status": "FAILURE"})]

    with pytest.raises(WebhookVerificationError, match="FAILURE"):
        billing.verify_webhook(WEBHOOK_HEADERS, b'{"event_type": "PAYMENT.CAPTURE.COMPLETED"}')


def test_verify_webhook_missing_headers_never_calls_paypal(billing, session):
    headers = dict(WEBHOOK_HEADERS)
    headers.pop("paypal-transmission-sig")

    with pytest.raises(WebhookVerificationError, match="paypal-transmission-sig"):
        billing.verify_webhook(headers, b'{"event_type": "PAYMENT.CAPTURE.COMPLETED"}')
    session.post.assert_not_called()


def test_verify_webhook_unreachable_paypal(billing, session):
    session.post.side_effect = [token_response(), requests.Timeout("timed out")]

    with pytest.raises(WebhookVerificationError, match="Could not verify"):
        billing.verify_webhook(WEBHOOK_HEADERS, b'{"event_type": "PAYMENT.CAPTURE.COMPLETED"}')


def test_verify_webhook_without_webhook_id(env, session):
    from course_pay.config import Settings

    env.pop("PAYPAL_WEBHOOK_ID")
    billing = PayPalBilling(Settings(environ=env), session=session)

    assert billing.validate_configuration() is False
    with pytest.raises(WebhookVerificationError, match="not configured"):
        billing.verify_webhook(WEBHOOK_HEADERS, b"{}")
