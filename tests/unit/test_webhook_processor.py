"""Unit tests for WebhookProcessor, the end-to-end delivery pipeline.

Test categories:
- Verification failures surface as WEBHOOK_VERIFICATION_FAILED
- Storage faults at the checkpoint surface as WEBHOOK_STORAGE_UNAVAILABLE
- After the checkpoint the delivery is always acknowledged
"""

import dataclasses
import json
import threading
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from payhook.models.enums import WebhookEventStatus
from payhook.models.errors import ErrorCode, IdempotencyStoreError, WebhookError
from payhook.models.stripe_webhook import WebhookAck
from payhook.services.dynamodb import DynamoDBService
from payhook.services.signature import sign_payload
from payhook.services.webhook_handler import HandlerResult, WebhookContext, WebhookProcessor

TEST_WEBHOOK_SECRET = "whsec_test_secret_for_testing"
NOW = 1704067200


@pytest.fixture
def processor(ctx: WebhookContext) -> WebhookProcessor:
    return WebhookProcessor(dataclasses.replace(ctx, clock=lambda: NOW))


@pytest.fixture
def deliver(
    processor: WebhookProcessor,
    event_payload: Callable[..., dict[str, Any]],
    payment_intent_object: Callable[..., dict[str, Any]],
) -> Callable[..., WebhookAck]:
    def _deliver(
        event_type: str = "payment_intent.succeeded",
        event_id: str = "evt_1ABC123DEF456",
        data_object: dict[str, Any] | None = None,
    ) -> WebhookAck:
        body = json.dumps(
            event_payload(
                event_type, data_object or payment_intent_object(), event_id=event_id, created=NOW
            )
        ).encode()
        header = sign_payload(TEST_WEBHOOK_SECRET, body, timestamp=NOW)
        return processor.process(body, header)

    return _deliver


class TestVerification:
    def test_missing_header(self, processor: WebhookProcessor) -> None:
        with pytest.raises(WebhookError) as exc_info:
            processor.process(b"{}", None)

        assert exc_info.value.code is ErrorCode.WEBHOOK_VERIFICATION_FAILED

    def test_bad_signature(self, processor: WebhookProcessor) -> None:
        with pytest.raises(WebhookError) as exc_info:
            processor.process(b"{}", f"t={NOW},v1={'00' * 32}")

        assert exc_info.value.code is ErrorCode.WEBHOOK_VERIFICATION_FAILED

    def test_stale_delivery(self, processor: WebhookProcessor) -> None:
        header = sign_payload(TEST_WEBHOOK_SECRET, b"{}", timestamp=NOW - 301)

        with pytest.raises(WebhookError):
            processor.process(b"{}", header)

    def test_signed_body_without_event_fields(self, processor: WebhookProcessor) -> None:
        body = b'{"type": "payment_intent.succeeded"}'
        header = sign_payload(TEST_WEBHOOK_SECRET, body, timestamp=NOW)

        with pytest.raises(WebhookError) as exc_info:
            processor.process(body, header)

        assert exc_info.value.code is ErrorCode.WEBHOOK_VERIFICATION_FAILED

    def test_rejected_delivery_is_not_recorded(
        self, processor: WebhookProcessor, ctx: WebhookContext
    ) -> None:
        body = json.dumps({"id": "evt_forged", "type": "x", "created": NOW, "data": {"object": {}}})

        with pytest.raises(WebhookError):
            processor.process(body.encode(), f"t={NOW},v1={'00' * 32}")

        assert ctx.guard.get_record("evt_forged") is None


class TestCheckpoint:
    def test_storage_fault(self, processor: WebhookProcessor, ctx: WebhookContext, deliver: Any) -> None:
        with patch.object(ctx.guard, "claim", side_effect=IdempotencyStoreError("down")):
            with pytest.raises(WebhookError) as exc_info:
                deliver()

        assert exc_info.value.code is ErrorCode.WEBHOOK_STORAGE_UNAVAILABLE

    def test_duplicate_is_acknowledged(
        self,
        ctx: WebhookContext,
        deliver: Any,
        seed_payment_intent: Any,
        table: Callable[[str], Any],
    ) -> None:
        seed_payment_intent()

        assert deliver() == WebhookAck()
        with patch.object(
            ctx.ledger, "record_payment", wraps=ctx.ledger.record_payment
        ) as record_payment:
            assert deliver() == WebhookAck(duplicate=True)

        record_payment.assert_not_called()
        sequence = table("receipt-sequences").get_item(Key={"community_id": "COM-001"})["Item"]
        assert sequence["last_value"] == 1

    def test_concurrent_deliveries_are_handled_once(
        self,
        processor: WebhookProcessor,
        ctx: WebhookContext,
        db: DynamoDBService,
        event_payload: Callable[..., dict[str, Any]],
        payment_intent_object: Callable[..., dict[str, Any]],
    ) -> None:
        workers = 5
        body = json.dumps(
            event_payload("payment_intent.succeeded", payment_intent_object(), created=NOW)
        ).encode()
        header = sign_payload(TEST_WEBHOOK_SECRET, body, timestamp=NOW)
        barrier = threading.Barrier(workers)
        acks: list[WebhookAck] = []
        errors: list[Exception] = []
        lock = threading.Lock()
        store_lock = threading.Lock()
        insert_unique = db.insert_unique

        # A single conditional put is atomic in DynamoDB; moto needs the lock.
        def _atomic_insert(table: str, item: dict[str, Any], key_name: str) -> bool:
            with store_lock:
                return insert_unique(table, item, key_name=key_name)

        def _worker() -> None:
            barrier.wait()
            try:
                ack = processor.process(body, header)
            except Exception as e:
                with lock:
                    errors.append(e)
                return
            with lock:
                acks.append(ack)

        handler = MagicMock(return_value=HandlerResult.ok())
        with (
            patch("payhook.services.webhook_handler.dispatch_event", handler),
            patch.object(db, "insert_unique", side_effect=_atomic_insert),
        ):
            threads = [threading.Thread(target=_worker) for _ in range(workers)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert errors == []
        handler.assert_called_once()
        assert acks.count(WebhookAck()) == 1
        assert acks.count(WebhookAck(duplicate=True)) == workers - 1
        record = ctx.guard.get_record("evt_1ABC123DEF456")
        assert record is not None
        assert record.status == WebhookEventStatus.COMPLETED


class TestAcknowledgment:
    def test_success_is_recorded_completed(
        self, ctx: WebhookContext, deliver: Any, seed_payment_intent: Any
    ) -> None:
        seed_payment_intent()

        ack = deliver()

        assert ack == WebhookAck()
        record = ctx.guard.get_record("evt_1ABC123DEF456")
        assert record is not None
        assert record.status == WebhookEventStatus.COMPLETED
        assert record.transaction_id

    def test_handler_failure_still_acknowledged(self, ctx: WebhookContext, deliver: Any) -> None:
        ack = deliver()

        assert ack.received is True
        record = ctx.guard.get_record("evt_1ABC123DEF456")
        assert record is not None
        assert record.status == WebhookEventStatus.FAILED
        assert "not found" in (record.error_message or "")

    def test_unhandled_type_is_completed(self, ctx: WebhookContext, deliver: Any) -> None:
        deliver(event_type="customer.created", data_object={"id": "cus_123"})

        record = ctx.guard.get_record("evt_1ABC123DEF456")
        assert record is not None
        assert record.status == WebhookEventStatus.COMPLETED

    def test_outcome_write_failure_still_acknowledged(
        self, ctx: WebhookContext, deliver: Any
    ) -> None:
        with patch.object(ctx.recorder, "record", side_effect=RuntimeError("boom")):
            ack = deliver(event_type="customer.created", data_object={"id": "cus_123"})

        assert ack == WebhookAck()
        record = ctx.guard.get_record("evt_1ABC123DEF456")
        assert record is not None
        assert record.status == WebhookEventStatus.PROCESSING
