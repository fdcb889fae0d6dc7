"""Pytest configuration and fixtures for payhook tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (every table the webhook touches)
- Settings and a fully wired WebhookContext
- Factories for Stripe events and seeded payment intents
"""

import os
import time
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Generator
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

# === Environment Setup ===

os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-payhook")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from payhook.config import WebhookSettings  # noqa: E402
from payhook.models.stripe_webhook import StripeEvent  # noqa: E402
from payhook.services.dynamodb import DynamoDBService  # noqa: E402
from payhook.services.webhook_handler import WebhookContext  # noqa: E402

TEST_WEBHOOK_SECRET = "whsec_test_secret_for_testing"
TEST_PAYMENT_INTENT_ID = "pi_3ABC123DEF456"
TEST_COMMUNITY_ID = "COM-001"
TEST_UNIT_ID = "UNIT-101"
TEST_RESIDENT_ID = "RES-001"
TEST_USER_ID = "user-abc-123"
TABLE_PREFIX = "test-payhook"

# (table, partition key)
TABLES = [
    ("webhook-events", "event_id"),
    ("payment-intents", "stripe_payment_intent_id"),
    ("residents", "resident_id"),
    ("transactions", "transaction_id"),
    ("ledger-postings", "idempotency_key"),
    ("receipts", "transaction_id"),
    ("receipt-sequences", "community_id"),
]


# === Singleton Reset ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services before and after each test.

    Tests using mock_aws need a fresh DynamoDB service created inside the
    mock context rather than one left over from a previous test.
    """
    from payhook_api.dependencies import reset_services

    reset_services()
    yield
    reset_services()


# === DynamoDB Fixtures ===


@pytest.fixture
def mock_dynamodb_tables() -> Generator[None, None, None]:
    """Set up mock DynamoDB tables for every collaborator."""
    with mock_aws():
        os.environ["DYNAMODB_TABLE_PREFIX"] = TABLE_PREFIX
        os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"

        dynamodb = boto3.client("dynamodb", region_name="eu-west-1")
        for table, key in TABLES:
            dynamodb.create_table(
                TableName=f"{TABLE_PREFIX}-{table}",
                KeySchema=[{"AttributeName": key, "KeyType": "HASH"}],
                AttributeDefinitions=[{"AttributeName": key, "AttributeType": "S"}],
                BillingMode="PAY_PER_REQUEST",
            )

        yield


@pytest.fixture
def db(mock_dynamodb_tables: None) -> DynamoDBService:
    return DynamoDBService(environment="test")


@pytest.fixture
def table(mock_dynamodb_tables: None) -> Callable[[str], Any]:
    """Return a boto3 Table resource for an unprefixed table name."""
    resource = boto3.resource("dynamodb", region_name="eu-west-1")
    return lambda name: resource.Table(f"{TABLE_PREFIX}-{name}")


# === Settings and Context ===


@pytest.fixture
def settings() -> WebhookSettings:
    return WebhookSettings(
        environment="test",
        webhook_secret=TEST_WEBHOOK_SECRET,
        tolerance_seconds=300,
        push_function_name="payhook-test-send-push",
    )


@pytest.fixture
def lambda_client() -> MagicMock:
    """Mock Lambda client that accepts every async invoke."""
    client = MagicMock()
    client.invoke.return_value = {"StatusCode": 202}
    return client


@pytest.fixture
def ctx(
    settings: WebhookSettings, db: DynamoDBService, lambda_client: MagicMock
) -> WebhookContext:
    return WebhookContext.build(settings, db, lambda_client=lambda_client)


# === Data Factories ===


@pytest.fixture
def seed_payment_intent(
    mock_dynamodb_tables: None, table: Callable[[str], Any]
) -> Callable[..., dict[str, Any]]:
    """Insert a payment intent as the checkout flow would have created it."""

    def _seed(
        payment_intent_id: str = TEST_PAYMENT_INTENT_ID,
        status: str = "requires_action",
        payment_method_type: str = "card",
        metadata: dict[str, Any] | None = None,
        resident_id: str | None = TEST_RESIDENT_ID,
    ) -> dict[str, Any]:
        now = datetime.now(UTC).isoformat()
        item: dict[str, Any] = {
            "stripe_payment_intent_id": payment_intent_id,
            "community_id": TEST_COMMUNITY_ID,
            "unit_id": TEST_UNIT_ID,
            "amount": Decimal("150.50"),
            "currency": "mxn",
            "status": status,
            "payment_method_type": payment_method_type,
            "metadata": metadata or {},
            "created_at": now,
            "updated_at": now,
        }
        if resident_id:
            item["resident_id"] = resident_id
        table("payment-intents").put_item(Item=item)
        return item

    return _seed


@pytest.fixture
def seed_resident(
    mock_dynamodb_tables: None, table: Callable[[str], Any]
) -> Callable[..., dict[str, Any]]:
    def _seed(
        resident_id: str = TEST_RESIDENT_ID, user_id: str | None = TEST_USER_ID
    ) -> dict[str, Any]:
        item: dict[str, Any] = {"resident_id": resident_id, "community_id": TEST_COMMUNITY_ID}
        if user_id:
            item["user_id"] = user_id
        table("residents").put_item(Item=item)
        return item

    return _seed


def build_payment_intent_object(
    payment_intent_id: str = TEST_PAYMENT_INTENT_ID,
    amount: int = 15050,
    metadata: dict[str, Any] | None = None,
    **fields: Any,
) -> dict[str, Any]:
    if metadata is None:
        metadata = {
            "community_id": TEST_COMMUNITY_ID,
            "unit_id": TEST_UNIT_ID,
            "resident_id": TEST_RESIDENT_ID,
        }
    return {
        "id": payment_intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "mxn",
        "metadata": metadata,
        **fields,
    }


def build_event(
    event_type: str,
    data_object: dict[str, Any],
    event_id: str = "evt_1ABC123DEF456",
    created: int | None = None,
) -> dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "livemode": False,
        "data": {"object": data_object},
    }


@pytest.fixture
def make_event() -> Callable[..., StripeEvent]:
    """Build a validated StripeEvent for handler tests."""

    def _make(event_type: str, data_object: dict[str, Any] | None = None, **kwargs: Any) -> StripeEvent:
        if data_object is None:
            data_object = build_payment_intent_object()
        return StripeEvent.model_validate(build_event(event_type, data_object, **kwargs))

    return _make


@pytest.fixture
def event_payload() -> Callable[..., dict[str, Any]]:
    """Build a raw event dict, as Stripe would send it."""
    return build_event


@pytest.fixture
def payment_intent_object() -> Callable[..., dict[str, Any]]:
    return build_payment_intent_object
