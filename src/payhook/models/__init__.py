"""Pydantic models for payment webhook processing."""

from .enums import (
    PaymentIntentStatus,
    PaymentMethodType,
    StripeEventType,
    WebhookEventStatus,
)
from .errors import (
    ConfigurationError,
    CriticalStepError,
    ErrorCode,
    ErrorResponse,
    IdempotencyStoreError,
    NotificationError,
    SignatureVerificationError,
    VerificationFailure,
    WebhookError,
)
from .payment import LedgerPosting, PaymentIntentRecord, Receipt, cents_to_major
from .stripe_webhook import (
    ChargePayload,
    HandlerResult,
    PaymentIntentPayload,
    StripeEvent,
    SucceededPaymentIntentPayload,
    WebhookAck,
    WebhookEventRecord,
)

__all__ = [
    "ChargePayload",
    "ConfigurationError",
    "CriticalStepError",
    "ErrorCode",
    "ErrorResponse",
    "HandlerResult",
    "IdempotencyStoreError",
    "LedgerPosting",
    "NotificationError",
    "PaymentIntentPayload",
    "PaymentIntentRecord",
    "PaymentIntentStatus",
    "PaymentMethodType",
    "Receipt",
    "SignatureVerificationError",
    "StripeEvent",
    "StripeEventType",
    "SucceededPaymentIntentPayload",
    "VerificationFailure",
    "WebhookAck",
    "WebhookError",
    "WebhookEventRecord",
    "WebhookEventStatus",
    "cents_to_major",
]
