"""Durable store and cache adapters for account analytics."""

from account_analytics.store.base import AnalyticsCache, AnalyticsQuery, AnalyticsStore
from account_analytics.store.memory import InMemoryAnalyticsCache, InMemoryAnalyticsStore

__all__ = [
    "AnalyticsCache",
    "AnalyticsQuery",
    "AnalyticsStore",
    "InMemoryAnalyticsCache",
    "InMemoryAnalyticsStore",
]
