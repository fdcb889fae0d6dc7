"""FastAPI application exposing the Stripe webhook endpoint."""
