"""Push notifications to residents.

Notifications are delivered by a separate push-dispatch Lambda, invoked
asynchronously with ``{"user_id", "title", "body"}``. Residents are stored
with the auth ``user_id`` the dispatcher uses to find their devices.
"""

import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from payhook.models.errors import NotificationError
from payhook.services.dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

RESIDENTS_TABLE = "residents"


class PushNotificationService:
    """Resolves residents to push targets and hands messages to the dispatcher."""

    def __init__(
        self,
        db: DynamoDBService,
        function_name: str,
        lambda_client: Any | None = None,
    ) -> None:
        self._db = db
        self._function_name = function_name
        self._lambda = lambda_client or boto3.client("lambda")

    def resolve_user_id(self, resident_id: str) -> str | None:
        """Return the auth user ID linked to a resident, if any."""
        resident = self._db.get_item(RESIDENTS_TABLE, {"resident_id": resident_id})
        if not resident:
            return None
        user_id = resident.get("user_id")
        return str(user_id) if user_id else None

    def send(self, user_id: str, title: str, body: str) -> None:
        """Queue a push notification for a user.

        Raises:
            NotificationError: If the dispatcher could not be invoked
        """
        message = {"user_id": user_id, "title": title, "body": body}
        try:
            response = self._lambda.invoke(
                FunctionName=self._function_name,
                InvocationType="Event",
                Payload=json.dumps(message).encode("utf-8"),
            )
        except (ClientError, BotoCoreError) as e:
            raise NotificationError(f"Push dispatch failed for user {user_id}: {e}") from e

        status_code = response.get("StatusCode", 0)
        if status_code >= 300 or response.get("FunctionError"):
            raise NotificationError(
                f"Push dispatcher returned status {status_code} for user {user_id}"
            )
        logger.info("Push notification queued for user %s: %s", user_id, title)

    def notify_resident(self, resident_id: str, title: str, body: str) -> bool:
        """Send a notification to a resident's devices.

        Returns:
            True if sent, False if the resident has no linked user

        Raises:
            NotificationError: If the dispatcher could not be invoked
        """
        user_id = self.resolve_user_id(resident_id)
        if user_id is None:
            logger.warning("Resident %s has no user_id, skipping push", resident_id)
            return False
        self.send(user_id, title, body)
        return True
