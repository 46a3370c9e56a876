"""Reconciliation of fish diet survey logs into one canonical diet matrix."""

__version__ = "0.1.0"
