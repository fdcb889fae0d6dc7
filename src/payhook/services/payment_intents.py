"""Access to the local PaymentIntent mirror.

Every update is conditional on the record existing: a DynamoDB update on a
missing key would otherwise create a phantom payment intent.
"""

import datetime as dt
from typing import Any

from payhook.models.enums import PaymentIntentStatus
from payhook.models.errors import CriticalStepError
from payhook.models.payment import PaymentIntentRecord
from payhook.services.dynamodb import DynamoDBService

PAYMENT_INTENTS_TABLE = "payment-intents"


class PaymentIntentRepository:
    """Reads and updates ``payment-intents`` items by Stripe PaymentIntent ID."""

    def __init__(self, db: DynamoDBService) -> None:
        self._db = db

    def get(self, payment_intent_id: str) -> PaymentIntentRecord | None:
        item = self._db.get_item(
            PAYMENT_INTENTS_TABLE,
            {"stripe_payment_intent_id": payment_intent_id},
            consistent_read=True,
        )
        return PaymentIntentRecord.from_item(item) if item else None

    def _update(
        self,
        payment_intent_id: str,
        assignments: dict[str, Any],
    ) -> PaymentIntentRecord:
        assignments = {**assignments, "updated_at": dt.datetime.now(dt.UTC).isoformat()}
        names = {f"#{name}": name for name in assignments}
        values = {f":{name}": value for name, value in assignments.items()}
        expression = "SET " + ", ".join(f"#{name} = :{name}" for name in assignments)

        attrs = self._db.update_item(
            PAYMENT_INTENTS_TABLE,
            {"stripe_payment_intent_id": payment_intent_id},
            expression,
            values,
            names,
            condition_expression="attribute_exists(stripe_payment_intent_id)",
        )
        if attrs is None:
            raise CriticalStepError(f"Payment intent {payment_intent_id} not found")
        return PaymentIntentRecord.from_item(attrs)

    def update_status(
        self,
        payment_intent_id: str,
        status: PaymentIntentStatus,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentIntentRecord:
        """Set the status, optionally replacing the metadata map.

        Callers that pass ``metadata`` must have merged it with the stored map.

        Returns:
            The updated record

        Raises:
            CriticalStepError: If the payment intent does not exist
        """
        assignments: dict[str, Any] = {"status": status.value}
        if metadata is not None:
            assignments["metadata"] = metadata
        return self._update(payment_intent_id, assignments)

    def merge_metadata(
        self,
        payment_intent_id: str,
        updates: dict[str, Any],
        status: PaymentIntentStatus | None = None,
    ) -> PaymentIntentRecord:
        """Shallow-merge ``updates`` into the stored metadata and write it back.

        Keys written earlier by other handlers survive; keys in ``updates``
        overwrite. Optionally sets the status in the same write.

        Raises:
            CriticalStepError: If the payment intent does not exist
        """
        current = self.get(payment_intent_id)
        if current is None:
            raise CriticalStepError(f"Payment intent {payment_intent_id} not found")

        merged = {**current.metadata, **updates}
        assignments: dict[str, Any] = {"metadata": merged}
        if status is not None:
            assignments["status"] = status.value
        return self._update(payment_intent_id, assignments)

    def set_transaction_id(
        self, payment_intent_id: str, transaction_id: str
    ) -> PaymentIntentRecord:
        return self._update(payment_intent_id, {"transaction_id": transaction_id})
