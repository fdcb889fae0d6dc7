"""Payment intent, ledger and receipt models."""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, Field

from .enums import PaymentIntentStatus, PaymentMethodType

CENTS = Decimal("0.01")


def cents_to_major(amount: int) -> Decimal:
    """Convert an amount in minor units (centavos) to major units (pesos).

    >>> cents_to_major(15050)
    Decimal('150.50')
    """
    return (Decimal(amount) / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


class PaymentIntentRecord(BaseModel):
    """Local mirror of a Stripe PaymentIntent.

    Created by the checkout flow; the webhook only mutates it. ``metadata``
    is shared by every handler over the payment's lifetime, so writers
    merge into it rather than replacing it.
    """

    stripe_payment_intent_id: str = Field(..., examples=["pi_3ABC123DEF456"])
    community_id: str | None = None
    unit_id: str | None = None
    resident_id: str | None = None
    amount: Decimal | None = Field(default=None, description="Amount in MXN")
    currency: str = "mxn"
    status: PaymentIntentStatus
    payment_method_type: PaymentMethodType = PaymentMethodType.CARD
    transaction_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "PaymentIntentRecord":
        return cls.model_validate(item)


class LedgerPosting(BaseModel):
    """Arguments to the ledger posting procedure."""

    community_id: str
    unit_id: str
    amount: Decimal = Field(..., gt=0, description="Amount in MXN (major units)")
    payment_date: date
    description: str
    idempotency_key: str = Field(..., description="Stable key, one posting per key")
    created_by: str | None = Field(default=None, description="Audit actor")


class Receipt(BaseModel):
    """Human-facing receipt for a posted payment. Unique per transaction."""

    transaction_id: str
    receipt_number: str = Field(..., examples=["REC-000042"])
    community_id: str
    unit_id: str
    resident_id: str | None = None
    amount: Decimal
    payment_date: date
    payment_method_type: PaymentMethodType
    stripe_payment_intent_id: str
    created_at: datetime

    def to_item(self) -> dict[str, Any]:
        item = self.model_dump(exclude_none=True)
        item["payment_date"] = self.payment_date.isoformat()
        item["created_at"] = self.created_at.isoformat()
        item["payment_method_type"] = self.payment_method_type.value
        return item
