"""Standard error codes and exceptions for the payment webhook service.

Two families live here:
- ``ErrorCode``/``WebhookError``: sender-visible failures that become HTTP
  responses. Messages are deliberately generic so a forger learns nothing
  about which check rejected the request.
- Internal exceptions raised by services and converted by their callers.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error codes surfaced to the webhook sender."""

    WEBHOOK_VERIFICATION_FAILED = "ERR_WEBHOOK_001"
    WEBHOOK_STORAGE_UNAVAILABLE = "ERR_WEBHOOK_002"
    WEBHOOK_NOT_CONFIGURED = "ERR_WEBHOOK_003"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.WEBHOOK_VERIFICATION_FAILED: "Webhook verification failed",
    ErrorCode.WEBHOOK_STORAGE_UNAVAILABLE: "Webhook could not be recorded",
    ErrorCode.WEBHOOK_NOT_CONFIGURED: "Webhook receiver is not configured",
}

ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.WEBHOOK_VERIFICATION_FAILED: "Verify webhook secret configuration",
    ErrorCode.WEBHOOK_STORAGE_UNAVAILABLE: "Retry delivery later",
    ErrorCode.WEBHOOK_NOT_CONFIGURED: (
        "Set STRIPE_WEBHOOK_SECRET or the SSM webhook secret parameter"
    ),
}


class ErrorResponse(BaseModel):
    """JSON body returned for rejected webhook deliveries."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code.

        Args:
            code: The error code
            details: Optional additional context about the error

        Returns:
            An ErrorResponse with the message and recovery hint for the code.
        """
        return cls(
            error_code=code,
            message=ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class WebhookError(Exception):
    """Exception raised for deliveries rejected before the idempotency checkpoint.

    Converted to an ErrorResponse by the API exception handlers.
    """

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[dict[str, str]] = None,
    ):
        self.code = code
        self.message = ERROR_MESSAGES[code]
        self.recovery = ERROR_RECOVERY[code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse body."""
        return ErrorResponse.from_code(self.code, self.details)


class VerificationFailure(str, Enum):
    """Internal reasons a signed delivery was rejected. Logged, never returned."""

    MALFORMED_HEADER = "malformed_header"
    TIMESTAMP_OUTSIDE_TOLERANCE = "timestamp_outside_tolerance"
    SIGNATURE_MISMATCH = "signature_mismatch"
    INVALID_PAYLOAD = "invalid_payload"


class SignatureVerificationError(Exception):
    """Raised when a webhook delivery fails verification."""

    def __init__(self, reason: VerificationFailure, detail: str) -> None:
        super().__init__(f"{reason.value}: {detail}")
        self.reason = reason
        self.detail = detail


class ConfigurationError(Exception):
    """Raised when required configuration is missing."""


class IdempotencyStoreError(Exception):
    """Raised when the webhook event record cannot be written for a reason
    other than a duplicate event ID."""


class CriticalStepError(Exception):
    """Raised by a handler when a critical step fails; marks the event failed."""


class NotificationError(Exception):
    """Raised when the push dispatcher rejects a notification."""
