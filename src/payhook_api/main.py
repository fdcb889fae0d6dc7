"""FastAPI application for the payment webhook receiver.

This package provides REST endpoints for:
- Health checks
- Stripe webhook delivery

Deployed behind API Gateway through the Mangum ``handler``; run locally
with ``run_server``.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from mangum import Mangum

from payhook import __version__
from payhook.utils.logging import configure_logging
from payhook_api.exceptions import register_exception_handlers
from payhook_api.middleware.correlation import CorrelationIdMiddleware
from payhook_api.routes.webhooks import router as webhooks_router

configure_logging(logging.INFO)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Payment Webhook API",
        description="Receives Stripe payment events and posts them to the community ledger",
        version=__version__,
    )

    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app)
    app.include_router(webhooks_router)

    @app.get("/api/ping")
    async def ping() -> dict[str, Any]:
        """Root health check endpoint at /api/ping."""
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "service": "payhook-api",
        }

    return app


app = create_app()

# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
        reload: Enable hot reload for development (default: True)
    """
    import uvicorn

    if reload:
        # Use string reference for reload mode (uvicorn requirement)
        uvicorn.run("payhook_api.main:app", host=host, port=port, reload=True, reload_dirs=["src"])
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
