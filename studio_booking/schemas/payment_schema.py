"""Payment gateway payloads."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class PaymentIntentResult(BaseModel):
    """What the client needs to complete payment for a booking."""
    booking_id: str
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount_cents: int
    currency: str


class PaymentIntentObject(BaseModel):
    """The subset of a Stripe PaymentIntent the webhook handler relies on."""
    id: str
    amount: int = 0
    currency: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def booking_id(self) -> Optional[str]:
        return self.metadata.get("bookingId")


class PaymentEvent(BaseModel):
    """A verified gateway notification."""
    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    def payment_intent(self) -> PaymentIntentObject:
        return PaymentIntentObject.model_validate(self.data.get("object") or {})
