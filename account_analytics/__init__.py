"""Incremental per-account analytics over transaction and account events."""

__version__ = "0.1.0"
