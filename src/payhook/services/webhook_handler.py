"""Webhook handler for processing Stripe payment events.

Provides business logic for handling webhook events separate from
HTTP routing concerns. This enables:
- Unit testing with moto-backed or fake collaborators
- Reuse across different transport mechanisms (API Gateway, function URL)

Pipeline: verify signature -> claim event ID -> route by type -> handler ->
record outcome -> acknowledge.

Handler steps are either critical or best-effort. A critical step that
fails raises ``CriticalStepError`` (or lets a storage error escape), and the
event is recorded as failed. Best-effort steps run through
``run_best_effort`` and can never flip a handler's result.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ValidationError

from payhook.config import WebhookSettings
from payhook.models.enums import PaymentIntentStatus, PaymentMethodType, StripeEventType
from payhook.models.errors import (
    CriticalStepError,
    ErrorCode,
    IdempotencyStoreError,
    SignatureVerificationError,
    VerificationFailure,
    WebhookError,
)
from payhook.models.payment import (
    LedgerPosting,
    PaymentIntentRecord,
    Receipt,
    cents_to_major,
)
from payhook.models.stripe_webhook import (
    ChargePayload,
    HandlerResult,
    PaymentIntentPayload,
    StripeEvent,
    SucceededPaymentIntentPayload,
    WebhookAck,
)
from payhook.services.dynamodb import DynamoDBService
from payhook.services.ledger import LedgerService
from payhook.services.notifications import PushNotificationService
from payhook.services.payment_intents import PaymentIntentRepository
from payhook.services.signature import verify_signature
from payhook.services.webhook_events import IdempotencyGuard, OutcomeRecorder
from payhook.utils.logging import get_logger, log_payment_operation, log_webhook_event

logger = get_logger(__name__)

T = TypeVar("T")
P = TypeVar("P", bound=BaseModel)

PAYMENT_DESCRIPTIONS: dict[PaymentMethodType, str] = {
    PaymentMethodType.CARD: "Pago con tarjeta via Stripe - {payment_intent_id}",
    PaymentMethodType.OXXO: "Pago en OXXO via Stripe - {payment_intent_id}",
    PaymentMethodType.SPEI: "Transferencia SPEI via Stripe - {payment_intent_id}",
}

PAYMENT_RECEIVED_TITLE = "Pago recibido"
VOUCHER_EXPIRED_TITLE = "Ficha OXXO vencida"
VOUCHER_EXPIRED_BODY = (
    "Tu ficha de pago OXXO expiró sin pagarse. Genera una nueva para completar tu pago."
)


@dataclass(frozen=True)
class WebhookContext:
    """Everything a webhook request needs, built once per process."""

    settings: WebhookSettings
    guard: IdempotencyGuard
    recorder: OutcomeRecorder
    payment_intents: PaymentIntentRepository
    ledger: LedgerService
    notifications: PushNotificationService
    clock: Callable[[], float] = field(default=time.time)

    @classmethod
    def build(
        cls,
        settings: WebhookSettings,
        db: DynamoDBService,
        lambda_client: Any | None = None,
    ) -> "WebhookContext":
        return cls(
            settings=settings,
            guard=IdempotencyGuard(db),
            recorder=OutcomeRecorder(db),
            payment_intents=PaymentIntentRepository(db),
            ledger=LedgerService(db),
            notifications=PushNotificationService(
                db, settings.push_function_name, lambda_client=lambda_client
            ),
        )


def run_best_effort(step: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
    """Run a non-critical step, logging and swallowing any failure.

    Returns:
        The step's return value, or None if it raised
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.warning("Best-effort step %s failed: %s", step, e, exc_info=True)
        return None


def _decode(model: type[P], event: StripeEvent) -> P:
    """Validate ``data.object`` against the schema for this event type.

    Raises:
        CriticalStepError: Naming each invalid or missing field
    """
    try:
        return model.model_validate(event.data.object)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise CriticalStepError(f"Invalid {event.type} payload: {problems}") from e


# === Event handlers ===


def _issue_receipt(
    ctx: WebhookContext,
    payment: SucceededPaymentIntentPayload,
    record: PaymentIntentRecord,
    transaction_id: str,
    event: StripeEvent,
) -> bool:
    metadata = payment.metadata
    receipt = Receipt(
        transaction_id=transaction_id,
        receipt_number=ctx.ledger.next_receipt_number(metadata.community_id),
        community_id=metadata.community_id,
        unit_id=metadata.unit_id,
        resident_id=metadata.resident_id,
        amount=cents_to_major(payment.amount),
        payment_date=event.created_date,
        payment_method_type=record.payment_method_type,
        stripe_payment_intent_id=payment.id,
        created_at=event.created_at,
    )
    return ctx.ledger.create_receipt(receipt)


def handle_payment_intent_succeeded(ctx: WebhookContext, event: StripeEvent) -> HandlerResult:
    """Post a succeeded payment to the ledger.

    Critical: status update, ledger posting, storing the transaction ID.
    Best-effort: receipt, push notification.
    """
    payment = _decode(SucceededPaymentIntentPayload, event)
    metadata = payment.metadata
    amount = cents_to_major(payment.amount)

    record = ctx.payment_intents.update_status(payment.id, PaymentIntentStatus.SUCCEEDED)
    description = PAYMENT_DESCRIPTIONS[record.payment_method_type].format(
        payment_intent_id=payment.id
    )

    transaction_id = ctx.ledger.record_payment(
        LedgerPosting(
            community_id=metadata.community_id,
            unit_id=metadata.unit_id,
            amount=amount,
            payment_date=event.created_date,
            description=description,
            idempotency_key=f"stripe:{payment.id}",
            created_by=metadata.resident_id,
        )
    )
    if not transaction_id:
        raise CriticalStepError(f"record_payment returned no transaction_id for {payment.id}")

    ctx.payment_intents.set_transaction_id(payment.id, transaction_id)
    log_payment_operation(
        logger,
        "payment_posted",
        payment_intent_id=payment.id,
        transaction_id=transaction_id,
        amount=amount,
        status=PaymentIntentStatus.SUCCEEDED.value,
    )

    run_best_effort("create_receipt", _issue_receipt, ctx, payment, record, transaction_id, event)

    if metadata.resident_id:
        run_best_effort(
            "notify_payment_received",
            ctx.notifications.notify_resident,
            metadata.resident_id,
            PAYMENT_RECEIVED_TITLE,
            f"Tu pago de ${amount:.2f} ha sido procesado",
        )

    return HandlerResult.ok(transaction_id)


def handle_payment_intent_failed(ctx: WebhookContext, event: StripeEvent) -> HandlerResult:
    payment = _decode(PaymentIntentPayload, event)
    error = payment.last_payment_error

    if error and error.message:
        record = ctx.payment_intents.merge_metadata(
            payment.id, {"failure_message": error.message}, status=PaymentIntentStatus.FAILED
        )
    else:
        record = ctx.payment_intents.update_status(payment.id, PaymentIntentStatus.FAILED)

    # An OXXO intent fails when the voucher expires unpaid.
    resident_id = payment.metadata.resident_id or record.resident_id
    if record.payment_method_type == PaymentMethodType.OXXO and resident_id:
        run_best_effort(
            "notify_voucher_expired",
            ctx.notifications.notify_resident,
            resident_id,
            VOUCHER_EXPIRED_TITLE,
            VOUCHER_EXPIRED_BODY,
        )

    return HandlerResult.ok()


def handle_payment_intent_canceled(ctx: WebhookContext, event: StripeEvent) -> HandlerResult:
    payment = _decode(PaymentIntentPayload, event)
    ctx.payment_intents.update_status(payment.id, PaymentIntentStatus.CANCELED)
    return HandlerResult.ok()


def handle_payment_intent_requires_action(
    ctx: WebhookContext, event: StripeEvent
) -> HandlerResult:
    """Store the OXXO voucher URL (if any) and mark the intent as awaiting action.

    The voucher URL is merged into the existing metadata map.
    """
    payment = _decode(PaymentIntentPayload, event)
    voucher_url = payment.hosted_voucher_url

    if voucher_url:
        ctx.payment_intents.merge_metadata(
            payment.id,
            {"hosted_voucher_url": voucher_url},
            status=PaymentIntentStatus.REQUIRES_ACTION,
        )
    else:
        ctx.payment_intents.update_status(payment.id, PaymentIntentStatus.REQUIRES_ACTION)

    return HandlerResult.ok()


def handle_payment_intent_processing(ctx: WebhookContext, event: StripeEvent) -> HandlerResult:
    payment = _decode(PaymentIntentPayload, event)
    ctx.payment_intents.update_status(payment.id, PaymentIntentStatus.PROCESSING)
    return HandlerResult.ok()


def _find_refunded_payment(
    ctx: WebhookContext, payment_intent_id: str
) -> PaymentIntentRecord | None:
    # Store errors propagate to run_best_effort, which logs them under the step name.
    record = ctx.payment_intents.get(payment_intent_id)
    if record is None:
        logger.warning("charge.refunded: no local payment intent found for %s", payment_intent_id)
    return record


def handle_charge_refunded(ctx: WebhookContext, event: StripeEvent) -> HandlerResult:
    """Log a refund for manual reconciliation. Never fails the event.

    Reversing the ledger transaction is done by an operator.
    """
    try:
        charge = _decode(ChargePayload, event)
    except CriticalStepError as e:
        logger.warning("charge.refunded payload not understood, skipping: %s", e)
        return HandlerResult.ok()

    if not charge.payment_intent:
        logger.info("charge.refunded %s has no payment_intent, skipping", charge.id)
        return HandlerResult.ok()

    record = run_best_effort(
        "lookup_refunded_payment", _find_refunded_payment, ctx, charge.payment_intent
    )
    if record is None:
        return HandlerResult.ok()

    log_payment_operation(
        logger,
        "refund_pending_reconciliation",
        payment_intent_id=charge.payment_intent,
        transaction_id=record.transaction_id,
        amount=cents_to_major(charge.amount_refunded),
        status=record.status.value,
    )
    return HandlerResult.ok()


# === Routing ===

EventHandler = Callable[[WebhookContext, StripeEvent], HandlerResult]


def route_event(event_type: str) -> EventHandler | None:
    """Return the handler for an event type, or None for types we ignore."""
    match event_type:
        case StripeEventType.PAYMENT_INTENT_SUCCEEDED:
            return handle_payment_intent_succeeded
        case StripeEventType.PAYMENT_INTENT_FAILED:
            return handle_payment_intent_failed
        case StripeEventType.PAYMENT_INTENT_CANCELED:
            return handle_payment_intent_canceled
        case StripeEventType.PAYMENT_INTENT_REQUIRES_ACTION:
            return handle_payment_intent_requires_action
        case StripeEventType.PAYMENT_INTENT_PROCESSING:
            return handle_payment_intent_processing
        case StripeEventType.CHARGE_REFUNDED:
            return handle_charge_refunded
        case _:
            return None


def dispatch_event(ctx: WebhookContext, event: StripeEvent) -> HandlerResult:
    """Run the handler for ``event``; any exception becomes a failure result."""
    handler = route_event(event.type)
    if handler is None:
        log_webhook_event(logger, event.type, event.id, result="skipped")
        return HandlerResult.ok()

    try:
        return handler(ctx, event)
    except CriticalStepError as e:
        return HandlerResult.failure(str(e))
    except (ClientError, BotoCoreError) as e:
        return HandlerResult.failure(f"Storage error processing {event.type}: {e}")
    except Exception as e:
        logger.exception("Unhandled error processing %s (%s)", event.type, event.id)
        return HandlerResult.failure(f"Unhandled error processing {event.type}: {e}")


# === Request processing ===


class WebhookProcessor:
    """Processes one webhook delivery end to end.

    Raises ``WebhookError`` only for failures before the event is durably
    recorded. Once recorded, the delivery is always acknowledged; handler
    failures live on the stored event record.
    """

    def __init__(self, ctx: WebhookContext) -> None:
        self._ctx = ctx

    def verify(self, payload: bytes, signature_header: str | None) -> StripeEvent:
        """Authenticate the delivery and decode the event envelope.

        Raises:
            WebhookError: WEBHOOK_VERIFICATION_FAILED for any failure
        """
        if not signature_header:
            logger.warning("Webhook request missing Stripe-Signature header")
            raise WebhookError(ErrorCode.WEBHOOK_VERIFICATION_FAILED)

        settings = self._ctx.settings
        try:
            body = verify_signature(
                payload,
                signature_header,
                settings.webhook_secret,
                tolerance=settings.tolerance_seconds,
                now=self._ctx.clock(),
            )
        except SignatureVerificationError as e:
            if e.reason is VerificationFailure.INVALID_PAYLOAD:
                logger.error("Signed webhook payload could not be parsed: %s", e.detail)
            else:
                logger.warning("Webhook signature verification failed: %s", e)
            raise WebhookError(ErrorCode.WEBHOOK_VERIFICATION_FAILED) from e

        try:
            return StripeEvent.model_validate(body)
        except ValidationError as e:
            logger.error("Signed webhook payload is not a Stripe event: %s", e)
            raise WebhookError(ErrorCode.WEBHOOK_VERIFICATION_FAILED) from e

    def process(self, payload: bytes, signature_header: str | None) -> WebhookAck:
        """Verify, de-duplicate, handle and record a delivery.

        Args:
            payload: Raw request body
            signature_header: Stripe-Signature header value

        Returns:
            Acknowledgment for the sender

        Raises:
            WebhookError: If verification fails (400) or the event could not
                be recorded (500)
        """
        event = self.verify(payload, signature_header)
        log_webhook_event(logger, event.type, event.id, result="received")

        try:
            is_new = self._ctx.guard.claim(event, payload)
        except IdempotencyStoreError as e:
            logger.error("Could not record webhook event %s: %s", event.id, e)
            raise WebhookError(ErrorCode.WEBHOOK_STORAGE_UNAVAILABLE) from e

        if not is_new:
            return WebhookAck(duplicate=True)

        result = dispatch_event(self._ctx, event)
        run_best_effort("record_outcome", self._ctx.recorder.record, event, result)
        return WebhookAck()
