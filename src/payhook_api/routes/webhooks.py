"""Webhook endpoints for external service integrations.

Provides endpoints for:
- Stripe payment events (payment_intent.*, charge.refunded)

These endpoints do NOT require JWT authentication as they receive
signed payloads from external services.
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from payhook.models.errors import ErrorResponse
from payhook.models.stripe_webhook import WebhookAck
from payhook.services.signature import SIGNATURE_HEADER
from payhook.services.webhook_handler import WebhookProcessor
from payhook_api.dependencies import get_webhook_processor

router = APIRouter(tags=["webhooks"])


class WebhookErrorResponse(ErrorResponse):
    """Error body for rejected deliveries."""


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe payment events. Handles:
- payment_intent.succeeded: Posts the payment to the ledger and issues a receipt
- payment_intent.payment_failed / canceled / processing: Updates the payment status
- payment_intent.requires_action: Stores the OXXO voucher URL
- charge.refunded: Logged for manual reconciliation

**No authentication required** - signature is verified using the Stripe webhook secret.

**Idempotent**: Duplicate events (same event ID) return 200 with `duplicate: true`.
Once an event is recorded it is always acknowledged with 200, even if handling
failed; the failure is kept on the stored event record.
""",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={
        200: {
            "description": "Event received (or already received)",
            "model": WebhookAck,
        },
        400: {
            "description": "Missing or invalid signature, or unreadable payload",
            "model": WebhookErrorResponse,
        },
        500: {
            "description": "Event could not be recorded; Stripe will retry",
            "model": WebhookErrorResponse,
        },
    },
)
async def handle_stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookAck:
    """Handle incoming Stripe webhook events.

    The raw body is read before anything else touches it; the signature is
    computed over those exact bytes.
    """
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    # boto3 is blocking; keep it off the event loop.
    return await run_in_threadpool(processor.process, payload, signature)
