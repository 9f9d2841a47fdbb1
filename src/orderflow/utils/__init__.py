"""Utility modules for the order event pipeline."""
