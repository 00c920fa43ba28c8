import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from mongomock import MongoClient as MockMongoClient

from course_pay.config import Settings
from course_pay.event_store import ProcessedPaymentStore
from course_pay.main import create_app
from course_pay.paypal_integration import PayPalBilling
from course_pay.stripe_integration import StripeBilling

TEST_ENV = {
    "STRIPE_SECRET_KEY": "sk_test_123",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
    "PAYPAL_CLIENT_ID": "paypal-client",
    "PAYPAL_CLIENT_SECRET": "paypal-secret",
    "PAYPAL_WEBHOOK_ID": "WH-TEST-123",
    "COURSE_NAME": "Python for Payments",
}


@pytest.fixture
def env():
    """Environment mapping the Settings object is built from; tests may edit it."""
    return dict(TEST_ENV)


@pytest.fixture
def settings(env):
    return Settings(environ=env)


@pytest.fixture
def payments_collection():
    collection = MockMongoClient()["course_pay_test"]["processed_payments"]
    yield collection
    collection.delete_many({})


@pytest.fixture
def store(payments_collection):
    store = ProcessedPaymentStore(payments_collection)
    store.ensure_indexes()
    return store


@pytest.fixture
def stripe_billing(settings):
    return StripeBilling(settings)


@pytest.fixture
def paypal_billing():
    billing = MagicMock(spec=PayPalBilling)
    billing.name = "paypal"
    return billing


@pytest.fixture
def app(settings, payments_collection, stripe_billing, paypal_billing):
    return create_app(
        settings=settings,
        payments_collection=payments_collection,
        stripe_billing=stripe_billing,
        paypal_billing=paypal_billing,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sign_stripe_payload():
    """Build a Stripe-Signature header the way Stripe does."""
    def sign(payload: bytes, secret: str = TEST_ENV["STRIPE_WEBHOOK_SECRET"], timestamp: int = None) -> str:
        timestamp = timestamp or int(time.time())
        signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"
    return sign


@pytest.fixture
def stripe_succeeded_event():
    def build(intent_id: str = "pi_123", event_id: str = "evt_1") -> bytes:
        return json.dumps({
            "id": event_id,
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": intent_id,
                    "object": "payment_intent",
                    "status": "succeeded",
                    "amount": 9900,
                    "currency": "usd",
                    "receipt_email": "a@b.com",
                    "metadata": {"customer_email": "a@b.com", "customer_name": "A"},
                }
            },
        }).encode("utf-8")
    return build
