"""
PayPal billing integration utilities.
"""
import json
from typing import Any, Dict, Mapping, Optional

import requests

from course_pay.config import Settings
from course_pay.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    WebhookVerificationError,
)
from course_pay.logger import payment_logger, webhook_logger
from course_pay.models import PaymentIntent, PaymentStatus, WebhookEvent
from course_pay.utils import to_minor_units

PAYPAL_ORDER_STATUS_MAP = {
    "CREATED": PaymentStatus.REQUIRES_ACTION,
    "SAVED": PaymentStatus.REQUIRES_ACTION,
    "APPROVED": PaymentStatus.REQUIRES_ACTION,
    "PAYER_ACTION_REQUIRED": PaymentStatus.REQUIRES_ACTION,
    "VOIDED": PaymentStatus.CANCELED,
    "COMPLETED": PaymentStatus.SUCCEEDED,
}

PAYPAL_CAPTURE_STATUS_MAP = {
    "COMPLETED": PaymentStatus.SUCCEEDED,
    "PENDING": PaymentStatus.PROCESSING,
    "DECLINED": PaymentStatus.FAILED,
    "FAILED": PaymentStatus.FAILED,
    "REFUNDED": PaymentStatus.CANCELED,
    "PARTIALLY_REFUNDED": PaymentStatus.CANCELED,
}

# Headers PayPal signs every webhook delivery with
WEBHOOK_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalBilling:
    """Main class for PayPal payment operations."""

    name = "paypal"

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.client_id = settings.paypal_client_id
        self.client_secret = settings.paypal_client_secret
        self.webhook_id = settings.paypal_webhook_id
        self.api_base_url = settings.paypal_api_base_url
        self.timeout = settings.PROVIDER_TIMEOUT
        self.session = session or requests.Session()

        if not self.client_id or not self.client_secret:
            payment_logger.warning("PAYPAL_CLIENT_ID or PAYPAL_CLIENT_SECRET not set in environment variables")

        if settings.paypal_environment == "live":
            payment_logger.info("Using PayPal Live environment")
        else:
            payment_logger.info("Using PayPal Sandbox environment")

    def validate_configuration(self) -> bool:
        """Validate that all required PayPal configuration is present."""
        missing_config = []

        if not self.client_id:
            missing_config.append("PAYPAL_CLIENT_ID")
        if not self.client_secret:
            missing_config.append("PAYPAL_CLIENT_SECRET")
        if not self.webhook_id:
            missing_config.append("PAYPAL_WEBHOOK_ID")

        if missing_config:
            payment_logger.warning(f"Missing PayPal configuration: {', '.join(missing_config)}")
            return False

        return True

    def get_access_token(self) -> str:
        """Exchange the client credentials for an OAuth access token."""
        if not self.client_id or not self.client_secret:
            raise PaymentConfigurationError("PayPal client credentials are not configured")

        url = f"{self.api_base_url}/v1/oauth2/token"
        try:
            response = self.session.post(
                url,
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()["access_token"]
        except (requests.RequestException, KeyError, ValueError) as e:
            payment_logger.error("Error obtaining PayPal access token", error=e)
            raise PaymentProviderError("Could not authenticate with PayPal", self.name)

    def _headers(self) -> Dict[str, str]:
        """Get API headers for PayPal requests."""
        return {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Content-Type": "application/json",
        }

    def get_order(self, order_id: str) -> PaymentIntent:
        """
        Fetch the authoritative state of a PayPal order.

        Raises:
            PaymentProviderError: If PayPal cannot be reached or the order
                does not exist
        """
        url = f"{self.api_base_url}/v2/checkout/orders/{order_id}"
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            order = response.json()
        except requests.RequestException as e:
            payment_logger.error(f"Error getting PayPal order {order_id}", error=e)
            raise PaymentProviderError(_error_message(e, "Payment could not be found"), self.name)
        except ValueError as e:
            payment_logger.error(f"PayPal returned malformed order {order_id}", error=e)
            raise PaymentProviderError("Payment could not be verified", self.name)

        return self._to_payment_intent(order)

    def verify_webhook(self, headers: Mapping[str, str], payload: bytes) -> WebhookEvent:
        """
        Verify a webhook delivery with PayPal and parse it into a WebhookEvent.

        Raises:
            WebhookVerificationError: On missing webhook ID or headers, a
                failed verification, or a malformed payload
        """
        if not self.webhook_id:
            raise WebhookVerificationError("PayPal webhook ID is not configured")

        signed = {field: headers.get(header) for field, header in WEBHOOK_HEADERS.items()}
        missing = [WEBHOOK_HEADERS[field] for field, value in signed.items() if not value]
        if missing:
            raise WebhookVerificationError(f"Missing PayPal headers: {', '.join(missing)}")

        try:
            event = json.loads(payload)
        except (ValueError, UnicodeDecodeError):
            raise WebhookVerificationError("Malformed webhook payload")
        if not isinstance(event, dict):
            raise WebhookVerificationError("Malformed webhook payload")

        url = f"{self.api_base_url}/v1/notifications/verify-webhook-signature"
        body = dict(signed, webhook_id=self.webhook_id, webhook_event=event)
        try:
            response = self.session.post(url, json=body, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            verification_status = response.json().get("verification_status")
        except (requests.RequestException, ValueError, PaymentProviderError, PaymentConfigurationError) as e:
            webhook_logger.error("PayPal webhook verification request failed", error=e)
            raise WebhookVerificationError("Could not verify PayPal webhook")

        if verification_status != "SUCCESS":
            raise WebhookVerificationError(f"PayPal verification status: {verification_status}")

        if not event.get("event_type"):
            raise WebhookVerificationError("Malformed webhook payload")

        return WebhookEvent(
            provider=self.name,
            id=event.get("id"),
            type=event["event_type"],
            resource=event.get("resource") or {},
        )

    def _to_payment_intent(self, order: Dict[str, Any]) -> PaymentIntent:
        status = PAYPAL_ORDER_STATUS_MAP.get(order.get("status"), PaymentStatus.UNKNOWN)

        units = order.get("purchase_units") or []
        unit = units[0] if units else {}
        amount = unit.get("amount") or {}
        currency = amount.get("currency_code")
        try:
            minor_amount = to_minor_units(amount.get("value"), currency or "")
        except ValueError:
            minor_amount = None
        if not order.get("id") or not currency or minor_amount is None:
            payment_logger.error(f"PayPal order {order.get('id')} has no usable amount: {amount}")
            raise PaymentProviderError("Payment could not be verified", self.name)
        currency = currency.lower()

        metadata = {}
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            capture = captures[0]
            metadata["capture_id"] = capture.get("id", "")
            # A completed order can still hold a pending or declined capture
            if status == PaymentStatus.SUCCEEDED:
                status = PAYPAL_CAPTURE_STATUS_MAP.get(capture.get("status"), PaymentStatus.UNKNOWN)

        payer = order.get("payer") or {}
        if payer.get("payer_id"):
            metadata["payer_id"] = payer["payer_id"]

        payment_logger.debug(f"PayPal order {order['id']}: {order.get('status')} -> {status.value}")
        return PaymentIntent(
            id=order["id"],
            status=status,
            amount=minor_amount,
            currency=currency,
            metadata=metadata,
            customer_email=payer.get("email_address"),
        )


def _error_message(error: requests.RequestException, default: str) -> str:
    """Pull PayPal's human-readable message out of an error response."""
    response = getattr(error, "response", None)
    if response is None:
        return default
    try:
        return response.json().get("message") or default
    except ValueError:
        return default
