"""FastAPI dependency injection providers for the webhook pipeline.

Services are built lazily on first use and cached for the life of the
process (one Lambda container, or one uvicorn worker).

Service Dependency Graph:
    WebhookSettings (get_settings)
    DynamoDBService (singleton via get_dynamodb_service)
        └── WebhookContext
                └── WebhookProcessor

Testing:
    Override get_webhook_processor via app.dependency_overrides, or call
    reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from payhook.config import get_settings
from payhook.services.dynamodb import get_dynamodb_service
from payhook.services.webhook_handler import WebhookContext, WebhookProcessor


@lru_cache
def get_webhook_context() -> WebhookContext:
    """Get cached WebhookContext built from process settings."""
    settings = get_settings()
    return WebhookContext.build(settings, get_dynamodb_service(settings.environment))


@lru_cache
def get_webhook_processor() -> WebhookProcessor:
    return WebhookProcessor(get_webhook_context())


def reset_services() -> None:
    """Clear all cached service instances, settings included."""
    from payhook.services.dynamodb import reset_dynamodb_service

    get_webhook_processor.cache_clear()
    get_webhook_context.cache_clear()
    get_settings.cache_clear()
    reset_dynamodb_service()
