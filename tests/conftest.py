"""Pytest configuration and fixtures."""

import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable
from unittest.mock import MagicMock

import pytest

from account_analytics.config import AnalyticsConfig
from account_analytics.models.enums import EventKind
from account_analytics.models.events import (
    AccountOpenedPayload,
    AccountStatusPayload,
    EventEnvelope,
    TransactionPayload,
    parse_timestamp,
)
from account_analytics.retry import RetryPolicy
from account_analytics.store.memory import InMemoryAnalyticsCache, InMemoryAnalyticsStore

FIXED_NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def sample_account_id() -> str:
    """Sample account ID."""
    return "acct-test-001"


@pytest.fixture
def make_event(sample_account_id: str) -> Callable[..., EventEnvelope]:
    """Factory for transaction envelopes with unique idempotency keys."""
    counter = itertools.count(1)

    def _make(
        amount: str | Decimal,
        occurred_at: str | datetime,
        key: str | None = None,
        category: str | None = None,
        account_id: str | None = None,
    ) -> EventEnvelope:
        return EventEnvelope(
            kind=EventKind.TRANSACTION_POSTED,
            account_id=account_id or sample_account_id,
            occurred_at=parse_timestamp(occurred_at, "occurredAt"),
            idempotency_key=key or f"evt-{next(counter)}",
            payload=TransactionPayload(amount=Decimal(str(amount)), category=category),
        )

    return _make


@pytest.fixture
def make_account_event(sample_account_id: str) -> Callable[..., EventEnvelope]:
    """Factory for account lifecycle envelopes."""

    def _make(kind: EventKind, key: str, occurred_at: str = "2024-01-01T00:00:00Z") -> EventEnvelope:
        if kind == EventKind.ACCOUNT_STATUS_CHANGED:
            payload = AccountStatusPayload(status="FROZEN", previous_status="ACTIVE")
        else:
            payload = AccountOpenedPayload(account_type="CHECKING", status="ACTIVE")
        return EventEnvelope(
            kind=kind,
            account_id=sample_account_id,
            occurred_at=parse_timestamp(occurred_at, "occurredAt"),
            idempotency_key=key,
            payload=payload,
        )

    return _make


@pytest.fixture
def store() -> InMemoryAnalyticsStore:
    return InMemoryAnalyticsStore()


@pytest.fixture
def cache() -> InMemoryAnalyticsCache:
    return InMemoryAnalyticsCache()


@pytest.fixture
def config() -> AnalyticsConfig:
    return AnalyticsConfig()


@pytest.fixture
def sleep() -> MagicMock:
    """Stand-in for time.sleep that records backoff delays."""
    return MagicMock()


@pytest.fixture
def retry(config: AnalyticsConfig, sleep: MagicMock) -> RetryPolicy:
    return RetryPolicy(config.retry, sleep=sleep)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW
