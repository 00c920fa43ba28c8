"""
Pydantic models for the Course Payment server.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PAYPAL_ID_PATTERN = r"^[A-Za-z0-9-]+$"


class PaymentStatus(str, Enum):
    """Normalised lifecycle of a provider-side payment resource."""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


class PaymentRequest(BaseModel):
    """Model for a checkout attempt submitted by the browser."""
    amount: Decimal = Field(gt=0, description="Amount in major currency units, e.g. 99.00")
    currency: str = Field(default="usd", min_length=3, max_length=3, description="ISO 4217 currency code")
    customer_email: EmailStr = Field(description="Customer email address")
    customer_name: str = Field(min_length=1, description="Customer full name")

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, value: str) -> str:
        return value.lower()


class PaymentIntent(BaseModel):
    """Provider-owned payment resource, normalised across providers."""
    id: str = Field(description="Provider resource ID (Stripe PaymentIntent or PayPal order)")
    status: PaymentStatus = Field(description="Authoritative status reported by the provider")
    amount: int = Field(description="Amount in minor units")
    currency: str = Field(description="Lower-case ISO 4217 code")
    metadata: Dict[str, str] = Field(default_factory=dict)
    customer_email: Optional[str] = Field(default=None)
    client_secret: Optional[str] = Field(default=None, description="Stripe client secret for the browser")

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED


class CreatePaymentIntentResponse(BaseModel):
    """Model for the create-payment-intent response."""
    model_config = ConfigDict(populate_by_name=True)

    client_secret: str = Field(alias="clientSecret")
    payment_intent_id: str = Field(alias="paymentIntentId")


class ConfirmPaymentRequest(BaseModel):
    """Model for confirming a previously created PaymentIntent."""
    payment_intent_id: str = Field(pattern=r"^pi_[A-Za-z0-9_]+$", description="Stripe PaymentIntent ID")


class PayPalPaymentRequest(BaseModel):
    """Model for the PayPal approval callback posted by the checkout page."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(default=None, alias="orderID", pattern=PAYPAL_ID_PATTERN)
    payer_id: Optional[str] = Field(default=None, alias="payerID")
    payment_id: Optional[str] = Field(default=None, alias="paymentID", pattern=PAYPAL_ID_PATTERN)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    # Sent after PayPal has captured the money, so identity fields are
    # informational only and never fail the request
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None

    @field_validator("customer_email", "customer_name", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def lookup_id(self) -> Optional[str]:
        return self.order_id or self.payment_id


class PaymentResult(BaseModel):
    """Uniform success shape returned once the provider confirms a payment."""
    success: bool = True
    message: str = "Payment processed successfully"
    transaction_id: str
    amount: Decimal
    currency: str


class WebhookEvent(BaseModel):
    """Model for a verified provider webhook event."""
    provider: str = Field(description="Provider that sent the event")
    id: Optional[str] = Field(default=None, description="Provider event ID")
    type: str = Field(description="Type of webhook event")
    resource: dict = Field(default_factory=dict, description="Event payload object")


class ProcessedPayment(BaseModel):
    """Idempotency record for a payment whose side effects have run."""
    provider: str
    resource_id: str
    customer_email: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    source: str = Field(description="Which path fulfilled it: confirm, paypal-success or webhook")
    processed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class HealthResponse(BaseModel):
    """Model for the liveness probe."""
    status: str = "Server is running"
    timestamp: str
    base_path: str = Field(alias="basePath")
