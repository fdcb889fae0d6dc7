"""FastAPI exception handlers for converting WebhookError to HTTP responses.

Only failures before the idempotency checkpoint reach the sender:
- 400 Bad Request: the delivery could not be authenticated or decoded
- 500 Internal Server Error: the event could not be recorded, or the
  receiver has no signing secret configured; Stripe retries both

Usage:
    from payhook_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR

from payhook.models.errors import ConfigurationError, ErrorCode, ErrorResponse, WebhookError
from payhook.utils.logging import get_logger

logger = get_logger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.WEBHOOK_VERIFICATION_FAILED: HTTP_400_BAD_REQUEST,
    ErrorCode.WEBHOOK_STORAGE_UNAVAILABLE: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.WEBHOOK_NOT_CONFIGURED: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, defaulting to 400."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def webhook_error_handler(request: Request, exc: WebhookError) -> JSONResponse:
    """Convert a WebhookError to a JSON ErrorResponse with the mapped status.

    Args:
        request: The incoming request (unused but required by FastAPI)
        exc: The WebhookError exception

    Returns:
        JSONResponse with error details and appropriate status code.
    """
    status_code = get_http_status_for_error(exc.code)
    logger.info(
        "Rejecting webhook delivery with %s (%s)", status_code, exc.code.value
    )
    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    """Return a JSON 500 when settings cannot be loaded for the request.

    The underlying reason names env vars and SSM paths, so it is logged only.
    """
    logger.error("Webhook receiver is not configured: %s", exc)
    return JSONResponse(
        status_code=get_http_status_for_error(ErrorCode.WEBHOOK_NOT_CONFIGURED),
        content=ErrorResponse.from_code(ErrorCode.WEBHOOK_NOT_CONFIGURED).model_dump(mode="json"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(WebhookError, webhook_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ConfigurationError, configuration_error_handler)  # type: ignore[arg-type]
