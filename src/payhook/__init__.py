"""Stripe payment webhook receiver for community ledgers."""

__version__ = "0.1.0"
