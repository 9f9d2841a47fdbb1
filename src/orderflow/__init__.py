"""Idempotent order-payment event pipeline."""

__version__ = "0.1.0"
