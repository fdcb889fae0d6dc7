"""API routes package.

- webhooks: Stripe webhook receiver
"""

from payhook_api.routes.webhooks import router as webhooks_router

__all__ = ["webhooks_router"]
