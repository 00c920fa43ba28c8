"""
Stripe billing integration utilities.
"""
import json
from typing import Any, Optional

import stripe

from course_pay.config import Settings
from course_pay.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    WebhookVerificationError,
)
from course_pay.logger import payment_logger, webhook_logger
from course_pay.models import PaymentIntent, PaymentRequest, PaymentStatus, WebhookEvent
from course_pay.utils import to_minor_units

STRIPE_STATUS_MAP = {
    "requires_payment_method": PaymentStatus.REQUIRES_PAYMENT_METHOD,
    "requires_confirmation": PaymentStatus.REQUIRES_ACTION,
    "requires_action": PaymentStatus.REQUIRES_ACTION,
    "processing": PaymentStatus.PROCESSING,
    "requires_capture": PaymentStatus.PROCESSING,
    "canceled": PaymentStatus.CANCELED,
    "succeeded": PaymentStatus.SUCCEEDED,
}


class StripeBilling:
    """Main class for Stripe payment operations."""

    name = "stripe"

    def __init__(self, settings: Settings):
        self.settings = settings
        self.secret_key = settings.stripe_secret_key
        self.webhook_secret = settings.stripe_webhook_secret

        if not self.secret_key:
            payment_logger.warning("STRIPE_SECRET_KEY not set in environment variables")
        elif self.secret_key.startswith("sk_test_"):
            payment_logger.info("Using Stripe test mode")
        else:
            payment_logger.info("Using Stripe live mode")

    def validate_configuration(self) -> bool:
        """Validate that all required Stripe configuration is present."""
        missing_config = []

        if not self.secret_key:
            missing_config.append("STRIPE_SECRET_KEY")
        if not self.webhook_secret:
            missing_config.append("STRIPE_WEBHOOK_SECRET")

        if missing_config:
            payment_logger.warning(f"Missing Stripe configuration: {', '.join(missing_config)}")
            return False

        return True

    def _require_key(self):
        if not self.secret_key:
            raise PaymentConfigurationError("Stripe secret key is not configured")

    def create_payment_intent(
        self,
        payment: PaymentRequest,
        idempotency_key: Optional[str] = None
    ) -> PaymentIntent:
        """
        Create a PaymentIntent for a checkout attempt.

        Args:
            payment: Validated checkout request, amount in major units
            idempotency_key: Optional client key so retries don't double-charge

        Returns:
            PaymentIntent: The created intent, including its client secret

        Raises:
            ValueError: If the amount cannot be expressed in minor units
            PaymentProviderError: If Stripe rejects the request
        """
        self._require_key()
        amount = to_minor_units(payment.amount, payment.currency)

        payment_logger.info(
            f"Creating Stripe PaymentIntent for {payment.customer_email}: {amount} {payment.currency}"
        )
        params = {
            "amount": amount,
            "currency": payment.currency,
            "description": f"{self.settings.course_name} purchase",
            "receipt_email": payment.customer_email,
            "metadata": {
                "customer_email": payment.customer_email,
                "customer_name": payment.customer_name,
                "course": self.settings.course_name,
            },
            "automatic_payment_methods": {"enabled": True},
            "api_key": self.secret_key,
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as e:
            payment_logger.error("Stripe rejected PaymentIntent creation", error=e)
            raise PaymentProviderError(e.user_message or "Payment provider error", self.name)

        return self._to_payment_intent(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """Fetch the authoritative state of a PaymentIntent from Stripe."""
        self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            payment_logger.error(f"Error retrieving Stripe PaymentIntent {payment_intent_id}", error=e)
            raise PaymentProviderError(e.user_message or "Payment could not be found", self.name)

        return self._to_payment_intent(intent)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Verify a webhook delivery and parse it into a WebhookEvent.

        Nothing in the payload is read until the signature has been checked.

        Raises:
            WebhookVerificationError: On missing secret, missing or invalid
                signature, or a malformed payload
        """
        if not self.webhook_secret:
            raise WebhookVerificationError("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                self.settings.STRIPE_WEBHOOK_TOLERANCE,
            )
        except (UnicodeDecodeError, stripe.SignatureVerificationError) as e:
            raise WebhookVerificationError(f"Invalid Stripe signature: {e}")

        try:
            data = json.loads(body)
            return WebhookEvent(
                provider=self.name,
                id=data.get("id"),
                type=data["type"],
                resource=data.get("data", {}).get("object") or {},
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            webhook_logger.warning(f"Malformed Stripe webhook payload: {e}")
            raise WebhookVerificationError("Malformed webhook payload")

    def _to_payment_intent(self, intent: Any) -> PaymentIntent:
        metadata = getattr(intent, "metadata", None) or {}
        payment_logger.debug(f"Stripe PaymentIntent {intent.id}: {intent.status}")
        return PaymentIntent(
            id=intent.id,
            status=STRIPE_STATUS_MAP.get(intent.status, PaymentStatus.UNKNOWN),
            amount=intent.amount,
            currency=intent.currency,
            metadata={str(k): str(v) for k, v in metadata.items()},
            customer_email=getattr(intent, "receipt_email", None) or metadata.get("customer_email"),
            client_secret=getattr(intent, "client_secret", None),
        )
