"""Webhook event records: the idempotency checkpoint and the outcome write-back.

The ``webhook-events`` table is keyed by Stripe event ID. A conditional put
on that key is the only thing that stops two concurrent deliveries of the
same event from both running a handler.
"""

import datetime as dt
import hashlib

from botocore.exceptions import BotoCoreError, ClientError

from payhook.models.enums import WebhookEventStatus
from payhook.models.errors import IdempotencyStoreError
from payhook.models.stripe_webhook import HandlerResult, StripeEvent, WebhookEventRecord
from payhook.services.dynamodb import DynamoDBService
from payhook.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

WEBHOOK_EVENTS_TABLE = "webhook-events"


def compute_payload_hash(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


class IdempotencyGuard:
    """Records each inbound event exactly once."""

    def __init__(self, db: DynamoDBService) -> None:
        self._db = db

    def claim(
        self,
        event: StripeEvent,
        payload: bytes,
        received_at: dt.datetime | None = None,
    ) -> bool:
        """Insert the event record with status ``processing``.

        There is no existence check beforehand: the conditional insert is
        the check.

        Args:
            event: Verified event envelope
            payload: Raw request body, stored for audit and manual replay
            received_at: Receipt time (defaults to now, UTC)

        Returns:
            True for a first delivery, False if the event ID is already recorded

        Raises:
            IdempotencyStoreError: If the store could not be written
        """
        record = WebhookEventRecord(
            event_id=event.id,
            event_type=event.type,
            payload=payload.decode("utf-8", errors="replace"),
            payload_hash=compute_payload_hash(payload),
            status=WebhookEventStatus.PROCESSING,
            received_at=received_at or dt.datetime.now(dt.UTC),
        )

        try:
            inserted = self._db.insert_unique(
                WEBHOOK_EVENTS_TABLE, record.to_item(), key_name="event_id"
            )
        except (ClientError, BotoCoreError) as e:
            raise IdempotencyStoreError(
                f"Failed to record webhook event {event.id}: {e}"
            ) from e

        if not inserted:
            log_webhook_event(logger, event.type, event.id, result="duplicate")
        return inserted

    def get_record(self, event_id: str) -> WebhookEventRecord | None:
        item = self._db.get_item(WEBHOOK_EVENTS_TABLE, {"event_id": event_id}, consistent_read=True)
        return WebhookEventRecord.from_item(item) if item else None


class OutcomeRecorder:
    """Writes the terminal status back onto the webhook event record."""

    def __init__(self, db: DynamoDBService) -> None:
        self._db = db

    def record(
        self,
        event: StripeEvent,
        result: HandlerResult,
        processed_at: dt.datetime | None = None,
    ) -> bool:
        """Mark the event ``completed`` or ``failed``.

        A failure to write is logged and reported through the return value;
        it never changes what the sender is told.

        Returns:
            True if the record was updated
        """
        status = WebhookEventStatus.COMPLETED if result.success else WebhookEventStatus.FAILED
        processed_at = processed_at or dt.datetime.now(dt.UTC)

        assignments = ["#status = :status", "processed_at = :processed_at"]
        values: dict[str, str] = {
            ":status": status.value,
            ":processed_at": processed_at.isoformat(),
        }
        if result.error:
            assignments.append("error_message = :error")
            values[":error"] = result.error
        if result.transaction_id:
            assignments.append("transaction_id = :tx")
            values[":tx"] = result.transaction_id

        try:
            self._db.update_item(
                WEBHOOK_EVENTS_TABLE,
                {"event_id": event.id},
                "SET " + ", ".join(assignments),
                values,
                {"#status": "status"},  # status is a reserved word
            )
        except (ClientError, BotoCoreError) as e:
            log_webhook_event(
                logger,
                event.type,
                event.id,
                result="error",
                error=f"failed to record outcome {status.value}: {e}",
            )
            return False

        log_webhook_event(
            logger,
            event.type,
            event.id,
            transaction_id=result.transaction_id,
            result=status.value,
            error=result.error,
        )
        return True
