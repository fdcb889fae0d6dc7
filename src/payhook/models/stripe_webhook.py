"""Stripe webhook models: the inbound event envelope, per-event payload
schemas, and the stored event record used for idempotency and auditing."""

from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import WebhookEventStatus


# === Inbound envelope ===


class StripeEventData(BaseModel):
    """The ``data`` member of a Stripe event."""

    object: dict[str, Any] = Field(..., description="The API resource the event is about")


class StripeEvent(BaseModel):
    """Stripe event envelope.

    Immutable once received; only used for routing and payload extraction.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, examples=["evt_1ABC123DEF456"])
    type: str = Field(..., min_length=1, examples=["payment_intent.succeeded"])
    created: int = Field(..., description="Unix timestamp of event creation")
    data: StripeEventData
    livemode: bool = False
    api_version: str | None = None

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.created, tz=UTC)

    @property
    def created_date(self) -> date:
        """Calendar date (UTC) the event was created, used as the payment date."""
        return self.created_at.date()


# === Per-event payload schemas ===


class OxxoDisplayDetails(BaseModel):
    expires_after: int | None = None
    hosted_voucher_url: str | None = None
    number: str | None = None


class NextAction(BaseModel):
    type: str | None = None
    oxxo_display_details: OxxoDisplayDetails | None = None


class PaymentError(BaseModel):
    code: str | None = None
    message: str | None = None


class PaymentIntentMetadata(BaseModel):
    """Metadata attached to the PaymentIntent when it was created."""

    community_id: str | None = None
    unit_id: str | None = None
    resident_id: str | None = None


class SucceededPaymentMetadata(PaymentIntentMetadata):
    """Metadata a succeeded payment must carry to be posted to the ledger."""

    community_id: str = Field(..., min_length=1)
    unit_id: str = Field(..., min_length=1)


class PaymentIntentPayload(BaseModel):
    """``data.object`` of a ``payment_intent.*`` event."""

    id: str = Field(..., min_length=1, examples=["pi_3ABC123DEF456"])
    amount: int = Field(..., ge=0, description="Amount in centavos")
    currency: str = "mxn"
    metadata: PaymentIntentMetadata = Field(default_factory=PaymentIntentMetadata)
    next_action: NextAction | None = None
    last_payment_error: PaymentError | None = None
    payment_method_types: list[str] = Field(default_factory=list)

    @property
    def hosted_voucher_url(self) -> str | None:
        if self.next_action and self.next_action.oxxo_display_details:
            return self.next_action.oxxo_display_details.hosted_voucher_url
        return None


class SucceededPaymentIntentPayload(PaymentIntentPayload):
    metadata: SucceededPaymentMetadata


class ChargePayload(BaseModel):
    """``data.object`` of a ``charge.*`` event."""

    id: str = Field(..., min_length=1, examples=["ch_3ABC123DEF456"])
    payment_intent: str | None = None
    amount: int = Field(default=0, ge=0)
    amount_refunded: int = Field(default=0, ge=0)


# === Stored record ===


class WebhookEventRecord(BaseModel):
    """Durable record of a received Stripe webhook event.

    Used for:
    - Idempotency: the unique event_id key prevents processing an event twice
    - Auditing: track all webhook deliveries and their outcome
    - Manual replay: failed events keep the raw payload and error detail
    """

    event_id: str = Field(..., description="Stripe event ID (evt_xxx)")
    event_type: str = Field(..., description="Stripe event type")
    payload: str = Field(..., description="Raw request body as received")
    payload_hash: str = Field(..., description="SHA-256 hash of the raw body")
    status: WebhookEventStatus = WebhookEventStatus.PROCESSING
    error_message: str | None = None
    transaction_id: str | None = None
    received_at: datetime
    processed_at: datetime | None = None

    def to_item(self) -> dict[str, Any]:
        """Serialize to a DynamoDB item, omitting empty attributes."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "WebhookEventRecord":
        return cls.model_validate(item)


# === Results ===


class HandlerResult(BaseModel):
    """Outcome of a single event handler."""

    success: bool
    transaction_id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, transaction_id: str | None = None) -> "HandlerResult":
        return cls(success=True, transaction_id=transaction_id)

    @classmethod
    def failure(cls, error: str) -> "HandlerResult":
        return cls(success=False, error=error)


class WebhookAck(BaseModel):
    """Acknowledgment body returned to Stripe."""

    received: bool = True
    duplicate: bool | None = None
