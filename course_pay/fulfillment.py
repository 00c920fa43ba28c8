"""
Post-payment business actions, run at most once per provider payment.
"""
from typing import Optional

from course_pay.event_store import ProcessedPaymentStore
from course_pay.logger import payment_logger
from course_pay.models import ProcessedPayment


class CourseFulfillment:
    """Grants course access for payments the provider has confirmed."""

    def __init__(self, store: ProcessedPaymentStore, course_name: str):
        self.store = store
        self.course_name = course_name

    def grant_access(
        self,
        provider: str,
        resource_id: str,
        source: str,
        customer_email: Optional[str] = None,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> bool:
        """
        Grant course access for a confirmed payment.

        The confirm endpoint, the PayPal success endpoint and webhook
        redeliveries may all report the same payment; only the first caller
        to claim ``(provider, resource_id)`` performs the action.

        Returns:
            bool: True if access was granted by this call
        """
        record = ProcessedPayment(
            provider=provider,
            resource_id=resource_id,
            customer_email=customer_email,
            amount=amount,
            currency=currency,
            source=source,
        )
        if not self.store.claim(record):
            payment_logger.info(f"Skipping duplicate fulfillment for {provider} payment {resource_id} (via {source})")
            return False

        # Course access email and enrolment hook in here
        payment_logger.info(
            f"Payment completed: granting '{self.course_name}' access to "
            f"{customer_email or 'unknown customer'} for {provider} payment {resource_id} (via {source})"
        )
        return True
