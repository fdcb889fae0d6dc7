"""Process configuration, read once at cold start.

Values come from the environment. The webhook signing secret falls back to
SSM Parameter Store when ``STRIPE_WEBHOOK_SECRET`` is not set, which is how
deployed Lambdas receive it.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from payhook.models.errors import ConfigurationError
from payhook.services.ssm_service import SSMServiceError, get_ssm_service

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class WebhookSettings:
    """Read-only settings shared by every request in the process."""

    environment: str
    webhook_secret: str
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS
    push_function_name: str = "payhook-dev-send-push"

    @classmethod
    def from_env(cls) -> "WebhookSettings":
        """Build settings from environment variables (and SSM for the secret).

        Raises:
            ConfigurationError: If the webhook secret is unavailable or a
                numeric setting is not a number.
        """
        environment = os.environ.get("ENVIRONMENT", "dev")
        secret = os.environ.get("STRIPE_WEBHOOK_SECRET") or _secret_from_ssm(environment)

        raw_tolerance = os.environ.get("WEBHOOK_TOLERANCE_SECONDS", str(DEFAULT_TOLERANCE_SECONDS))
        try:
            tolerance = int(raw_tolerance)
        except ValueError as e:
            raise ConfigurationError(
                f"WEBHOOK_TOLERANCE_SECONDS must be an integer, got {raw_tolerance!r}"
            ) from e

        return cls(
            environment=environment,
            webhook_secret=secret,
            tolerance_seconds=tolerance,
            push_function_name=os.environ.get(
                "PUSH_FUNCTION_NAME", f"payhook-{environment}-send-push"
            ),
        )


def _secret_from_ssm(environment: str) -> str:
    name = f"/payhook/{environment}/stripe/webhook_secret"
    try:
        return get_ssm_service().get_parameter(name)
    except SSMServiceError as e:
        raise ConfigurationError(
            "Webhook secret not configured: set STRIPE_WEBHOOK_SECRET "
            f"or create SSM parameter {name}"
        ) from e


@lru_cache(maxsize=1)
def get_settings() -> WebhookSettings:
    settings = WebhookSettings.from_env()
    logger.info(
        "Webhook settings loaded for environment %s (tolerance=%ss)",
        settings.environment,
        settings.tolerance_seconds,
    )
    return settings
