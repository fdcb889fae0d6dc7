"""HTTP middleware for the webhook API."""

from payhook_api.middleware.correlation import CorrelationIdMiddleware

__all__ = ["CorrelationIdMiddleware"]
