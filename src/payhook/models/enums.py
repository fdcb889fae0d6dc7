"""Enumeration types for payhook data models."""

from enum import Enum


class StripeEventType(str, Enum):
    """Stripe event types with a dedicated handler."""

    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
    PAYMENT_INTENT_REQUIRES_ACTION = "payment_intent.requires_action"
    PAYMENT_INTENT_PROCESSING = "payment_intent.processing"
    CHARGE_REFUNDED = "charge.refunded"


class WebhookEventStatus(str, Enum):
    """Processing status of a stored webhook event."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentIntentStatus(str, Enum):
    """Status of a PaymentIntent as mirrored locally."""

    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class PaymentMethodType(str, Enum):
    """Payment methods offered to residents."""

    CARD = "card"
    OXXO = "oxxo"
    SPEI = "spei"
