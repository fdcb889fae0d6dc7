"""Ledger collaborator: payment posting, receipt numbering and receipts.

``record_payment`` is the single posting call the webhook relies on. It
writes a posting guard keyed by an idempotency key together with the
transaction header in one DynamoDB transaction, so a retried posting for
the same payment intent resolves to the transaction created the first time.
Line-level double-entry bookkeeping happens downstream of the transaction
header and is not part of this service.
"""

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any

from payhook.models.payment import LedgerPosting, Receipt
from payhook.services.dynamodb import DynamoDBService
from payhook.utils.logging import get_logger, log_payment_operation

logger = get_logger(__name__)

TRANSACTIONS_TABLE = "transactions"
LEDGER_POSTINGS_TABLE = "ledger-postings"
RECEIPTS_TABLE = "receipts"
RECEIPT_SEQUENCES_TABLE = "receipt-sequences"


def _attr(value: Any) -> dict[str, str]:
    """Encode a scalar as a low-level DynamoDB attribute value."""
    if isinstance(value, (int, Decimal)):
        return {"N": str(value)}
    return {"S": str(value)}


class LedgerService:
    """Posts payments to the community ledger and issues receipts."""

    def __init__(self, db: DynamoDBService) -> None:
        self._db = db

    def record_payment(self, posting: LedgerPosting) -> str | None:
        """Post a payment and return the ledger transaction ID.

        Idempotent per ``posting.idempotency_key``.

        Args:
            posting: Posting arguments (amount already in major units)

        Returns:
            The transaction ID, or None if the posting was rejected and no
            earlier posting exists for the key

        Raises:
            ClientError: If DynamoDB is unavailable
        """
        transaction_id = str(uuid.uuid4())
        now = dt.datetime.now(dt.UTC).isoformat()

        transaction: dict[str, Any] = {
            "transaction_id": transaction_id,
            "transaction_type": "payment",
            "status": "posted",
            "community_id": posting.community_id,
            "unit_id": posting.unit_id,
            "amount": posting.amount,
            "payment_date": posting.payment_date.isoformat(),
            "description": posting.description,
            "idempotency_key": posting.idempotency_key,
            "created_at": now,
        }
        if posting.created_by:
            transaction["created_by"] = posting.created_by

        committed = self._db.transact_write(
            [
                {
                    "Put": {
                        "TableName": self._db.table_name(LEDGER_POSTINGS_TABLE),
                        "Item": {
                            "idempotency_key": _attr(posting.idempotency_key),
                            "transaction_id": _attr(transaction_id),
                            "created_at": _attr(now),
                        },
                        "ConditionExpression": "attribute_not_exists(idempotency_key)",
                    }
                },
                {
                    "Put": {
                        "TableName": self._db.table_name(TRANSACTIONS_TABLE),
                        "Item": {k: _attr(v) for k, v in transaction.items()},
                        "ConditionExpression": "attribute_not_exists(transaction_id)",
                    }
                },
            ]
        )

        if committed:
            log_payment_operation(
                logger,
                "record_payment",
                transaction_id=transaction_id,
                amount=posting.amount,
                community_id=posting.community_id,
                unit_id=posting.unit_id,
            )
            return transaction_id

        existing = self._db.get_item(
            LEDGER_POSTINGS_TABLE,
            {"idempotency_key": posting.idempotency_key},
            consistent_read=True,
        )
        if existing:
            logger.info(
                "Posting %s already recorded as transaction %s",
                posting.idempotency_key,
                existing["transaction_id"],
            )
            return str(existing["transaction_id"])

        log_payment_operation(
            logger,
            "record_payment",
            amount=posting.amount,
            error=f"posting {posting.idempotency_key} was cancelled",
        )
        return None

    def next_receipt_number(self, community_id: str) -> str:
        """Allocate the next receipt number for a community.

        Numbers are sequential per community and never reused; an allocated
        number whose receipt insert is skipped leaves a gap.
        """
        attrs = self._db.update_item(
            RECEIPT_SEQUENCES_TABLE,
            {"community_id": community_id},
            "ADD last_value :one",
            {":one": 1},
        )
        if not attrs:
            raise RuntimeError(f"Receipt sequence for {community_id} returned no value")
        return f"REC-{int(attrs['last_value']):06d}"

    def create_receipt(self, receipt: Receipt) -> bool:
        """Insert a receipt unless one already exists for the transaction.

        Returns:
            True if inserted, False if the transaction already had a receipt
        """
        inserted = self._db.insert_unique(
            RECEIPTS_TABLE, receipt.to_item(), key_name="transaction_id"
        )
        if inserted:
            log_payment_operation(
                logger,
                "create_receipt",
                payment_intent_id=receipt.stripe_payment_intent_id,
                transaction_id=receipt.transaction_id,
                receipt_number=receipt.receipt_number,
            )
        else:
            logger.info(
                "Receipt for transaction %s already exists, skipping",
                receipt.transaction_id,
            )
        return inserted

    def get_receipt(self, transaction_id: str) -> dict[str, Any] | None:
        return self._db.get_item(RECEIPTS_TABLE, {"transaction_id": transaction_id})
