"""
Dispatch of verified provider webhook events.
"""
from typing import Callable, Dict, Optional

from course_pay.fulfillment import CourseFulfillment
from course_pay.logger import webhook_logger
from course_pay.models import WebhookEvent
from course_pay.utils import to_minor_units

EventHandler = Callable[[WebhookEvent], None]


class WebhookDispatcher:
    """Maps provider event types to handlers.

    Only events that passed signature verification reach ``dispatch``.
    Unknown event types are acknowledged and logged.
    """

    def __init__(self, fulfillment: CourseFulfillment):
        self.fulfillment = fulfillment
        self.handlers: Dict[str, Dict[str, EventHandler]] = {
            "stripe": {
                "payment_intent.succeeded": self._stripe_payment_succeeded,
                "payment_intent.payment_failed": self._stripe_payment_failed,
            },
            "paypal": {
                "PAYMENT.CAPTURE.COMPLETED": self._paypal_capture_completed,
                "PAYMENT.CAPTURE.DENIED": self._paypal_capture_denied,
                "CHECKOUT.ORDER.APPROVED": self._paypal_order_approved,
            },
        }

    def dispatch(self, event: WebhookEvent) -> bool:
        """
        Run the handler registered for an event.

        Returns:
            bool: True if a handler ran, False if the event type is unhandled
        """
        webhook_logger.info(f"{event.provider} webhook received: {event.type} ({event.id})")

        handler = self.handlers.get(event.provider, {}).get(event.type)
        if handler is None:
            webhook_logger.info(f"Unhandled {event.provider} webhook event type: {event.type}")
            return False

        handler(event)
        return True

    def _stripe_payment_succeeded(self, event: WebhookEvent):
        intent = event.resource
        if intent.get("status") != "succeeded" or not intent.get("id"):
            webhook_logger.warning(f"Ignoring {event.type} with status {intent.get('status')}")
            return

        metadata = intent.get("metadata") or {}
        self.fulfillment.grant_access(
            provider="stripe",
            resource_id=intent["id"],
            source="webhook",
            customer_email=intent.get("receipt_email") or metadata.get("customer_email"),
            amount=intent.get("amount"),
            currency=intent.get("currency"),
        )

    def _stripe_payment_failed(self, event: WebhookEvent):
        intent = event.resource
        error = (intent.get("last_payment_error") or {}).get("message", "unknown reason")
        webhook_logger.warning(f"Stripe payment {intent.get('id')} failed: {error}")

    def _paypal_capture_completed(self, event: WebhookEvent):
        capture = event.resource
        if not capture.get("id"):
            webhook_logger.warning("PayPal capture event without a capture ID")
            return

        webhook_logger.info(f"PayPal payment capture completed: {capture['id']}")
        # Fulfillment is keyed by order ID; a capture ID never matches the
        # success callback record
        order_id = _paypal_order_id(capture)
        if not order_id:
            webhook_logger.warning(f"PayPal capture {capture['id']} has no related order ID, not fulfilling")
            return

        amount = capture.get("amount") or {}
        currency = amount.get("currency_code")

        self.fulfillment.grant_access(
            provider="paypal",
            resource_id=order_id,
            source="webhook",
            amount=_paypal_minor_amount(amount.get("value"), currency),
            currency=currency.lower() if currency else None,
        )

    def _paypal_capture_denied(self, event: WebhookEvent):
        webhook_logger.warning(f"PayPal payment capture denied: {event.resource.get('id')}")

    def _paypal_order_approved(self, event: WebhookEvent):
        webhook_logger.info(f"PayPal order approved: {event.resource.get('id')}")


def _paypal_order_id(capture: dict) -> Optional[str]:
    """The order a capture belongs to, so webhook and success callback share one key."""
    related = (capture.get("supplementary_data") or {}).get("related_ids") or {}
    return related.get("order_id")


def _paypal_minor_amount(value: Optional[str], currency: Optional[str]) -> Optional[int]:
    if value is None or not currency:
        return None
    try:
        return to_minor_units(value, currency)
    except ValueError:
        return None
