"""Unit tests for the webhook event idempotency checkpoint and outcome recording.

Test categories:
- First delivery is claimed, repeats are reported as duplicates
- Storage faults are distinguished from duplicates
- Concurrent deliveries of one event: exactly one claim succeeds
- Outcome write-back for completed and failed events
"""

import hashlib
import threading
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from payhook.models.enums import WebhookEventStatus
from payhook.models.errors import IdempotencyStoreError
from payhook.models.stripe_webhook import HandlerResult, StripeEvent
from payhook.services.dynamodb import DynamoDBService
from payhook.services.webhook_events import IdempotencyGuard, OutcomeRecorder

PAYLOAD = b'{"id": "evt_1ABC123DEF456"}'


@pytest.fixture
def event(make_event: Callable[..., StripeEvent]) -> StripeEvent:
    return make_event("payment_intent.succeeded")


def _client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# === Claiming ===


class TestClaim:
    def test_first_delivery_is_claimed(
        self, db: DynamoDBService, event: StripeEvent, table: Callable[[str], Any]
    ) -> None:
        guard = IdempotencyGuard(db)

        assert guard.claim(event, PAYLOAD) is True

        item = table("webhook-events").get_item(Key={"event_id": event.id})["Item"]
        assert item["status"] == "processing"
        assert item["event_type"] == "payment_intent.succeeded"
        assert item["payload"] == PAYLOAD.decode()
        assert item["payload_hash"] == hashlib.sha256(PAYLOAD).hexdigest()
        assert "processed_at" not in item

    def test_repeat_delivery_is_duplicate(self, db: DynamoDBService, event: StripeEvent) -> None:
        guard = IdempotencyGuard(db)

        assert guard.claim(event, PAYLOAD) is True
        assert guard.claim(event, PAYLOAD) is False

    def test_duplicate_does_not_overwrite_record(
        self, db: DynamoDBService, event: StripeEvent
    ) -> None:
        guard = IdempotencyGuard(db)
        guard.claim(event, PAYLOAD)
        OutcomeRecorder(db).record(event, HandlerResult.ok("tx-1"))

        guard.claim(event, b'{"id": "evt_1ABC123DEF456", "retry": true}')

        record = guard.get_record(event.id)
        assert record is not None
        assert record.status == WebhookEventStatus.COMPLETED
        assert record.payload == PAYLOAD.decode()

    def test_storage_fault_is_not_a_duplicate(self, event: StripeEvent) -> None:
        db = MagicMock()
        db.insert_unique.side_effect = _client_error("ProvisionedThroughputExceededException")

        with pytest.raises(IdempotencyStoreError):
            IdempotencyGuard(db).claim(event, PAYLOAD)

    def test_connection_fault_is_not_a_duplicate(self, event: StripeEvent) -> None:
        db = MagicMock()
        db.insert_unique.side_effect = EndpointConnectionError(endpoint_url="https://dynamodb")

        with pytest.raises(IdempotencyStoreError):
            IdempotencyGuard(db).claim(event, PAYLOAD)

    def test_concurrent_deliveries_claim_once(self, event: StripeEvent) -> None:
        """Only the store's unique insert decides; no read happens first."""
        stored: dict[str, dict[str, Any]] = {}
        store_lock = threading.Lock()

        def insert_unique(table: str, item: dict[str, Any], key_name: str) -> bool:
            with store_lock:
                if item[key_name] in stored:
                    return False
                stored[item[key_name]] = item
                return True

        db = MagicMock()
        db.insert_unique.side_effect = insert_unique
        guard = IdempotencyGuard(db)
        results: list[bool] = []
        barrier = threading.Barrier(5)

        def deliver() -> None:
            barrier.wait()
            results.append(guard.claim(event, PAYLOAD))

        threads = [threading.Thread(target=deliver) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == [False, False, False, False, True]
        db.get_item.assert_not_called()

    def test_get_record_missing(self, db: DynamoDBService) -> None:
        assert IdempotencyGuard(db).get_record("evt_missing") is None


# === Outcome ===


class TestOutcomeRecorder:
    def test_records_completed_with_transaction(
        self, db: DynamoDBService, event: StripeEvent
    ) -> None:
        guard = IdempotencyGuard(db)
        guard.claim(event, PAYLOAD)

        assert OutcomeRecorder(db).record(event, HandlerResult.ok("tx-123")) is True

        record = guard.get_record(event.id)
        assert record is not None
        assert record.status == WebhookEventStatus.COMPLETED
        assert record.transaction_id == "tx-123"
        assert record.error_message is None
        assert record.processed_at is not None

    def test_records_failed_with_error(self, db: DynamoDBService, event: StripeEvent) -> None:
        guard = IdempotencyGuard(db)
        guard.claim(event, PAYLOAD)

        OutcomeRecorder(db).record(event, HandlerResult.failure("Payment intent pi_x not found"))

        record = guard.get_record(event.id)
        assert record is not None
        assert record.status == WebhookEventStatus.FAILED
        assert record.error_message == "Payment intent pi_x not found"

    def test_write_failure_is_reported_not_raised(self, event: StripeEvent) -> None:
        db = MagicMock()
        db.update_item.side_effect = _client_error("InternalServerError", "UpdateItem")

        assert OutcomeRecorder(db).record(event, HandlerResult.ok()) is False
