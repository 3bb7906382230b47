"""In-memory analytics store and cache.

Both keep serialized copies, so callers never share mutable state with the
store, matching what a round trip through Postgres or Redis gives.
"""

import threading
from dataclasses import dataclass, field
from typing import Any

from account_analytics.models.analytics import AccountAnalytics
from account_analytics.store.base import AnalyticsCache, AnalyticsQuery, AnalyticsStore
from account_analytics.store.serialization import (
    from_cache_payload,
    from_document,
    to_cache_payload,
    to_document,
)


@dataclass
class InMemoryAnalyticsStore(AnalyticsStore):
    """Durable-store stand-in holding one document per account."""

    documents: dict[str, dict[str, Any]] = field(default_factory=dict)
    writes: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get(self, account_id: str) -> AccountAnalytics | None:
        with self._lock:
            document = self.documents.get(account_id)
        return from_document(document) if document is not None else None

    def upsert(self, state: AccountAnalytics) -> None:
        document = to_document(state)
        with self._lock:
            self.documents[state.account_id] = document
            self.writes += 1

    def delete(self, account_id: str) -> bool:
        with self._lock:
            return self.documents.pop(account_id, None) is not None

    def exists(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self.documents

    def find(self, query: AnalyticsQuery) -> list[AccountAnalytics]:
        with self._lock:
            documents = list(self.documents.values())
        states = [s for s in (from_document(d) for d in documents) if query.matches(s)]
        # Same order as the Postgres query: newest update first, then account id
        states.sort(key=lambda s: (
            s.last_updated is None,
            -s.last_updated.timestamp() if s.last_updated else 0.0,
            s.account_id,
        ))
        return states[: query.limit] if query.limit is not None else states


@dataclass
class InMemoryAnalyticsCache(AnalyticsCache):
    """Cache stand-in holding the JSON payload per account."""

    entries: dict[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def get(self, account_id: str) -> AccountAnalytics | None:
        with self._lock:
            payload = self.entries.get(account_id)
        return from_cache_payload(payload) if payload is not None else None

    def set(self, state: AccountAnalytics) -> None:
        payload = to_cache_payload(state)
        with self._lock:
            self.entries[state.account_id] = payload

    def add(self, state: AccountAnalytics) -> bool:
        payload = to_cache_payload(state)
        with self._lock:
            return self.entries.setdefault(state.account_id, payload) is payload

    def delete(self, account_id: str) -> None:
        with self._lock:
            self.entries.pop(account_id, None)
