"""Interfaces for the durable analytics store and the analytics cache."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from account_analytics.models.analytics import AccountAnalytics
from account_analytics.models.enums import SpendingPattern


@dataclass
class AnalyticsQuery:
    """Filter over indexed analytics fields. Unset fields do not filter."""

    min_balance: Decimal | None = None
    max_balance: Decimal | None = None
    min_volatility: Decimal | None = None
    max_volatility: Decimal | None = None
    min_transaction_count: int | None = None
    spending_pattern: SpendingPattern | None = None
    primary_category: str | None = None
    updated_since: datetime | None = None
    limit: int | None = None

    def matches(self, state: AccountAnalytics) -> bool:
        """Evaluate the filter against an in-memory state."""
        if self.min_balance is not None and state.total_balance < self.min_balance:
            return False
        if self.max_balance is not None and state.total_balance > self.max_balance:
            return False
        if self.min_volatility is not None and state.volatility_score < self.min_volatility:
            return False
        if self.max_volatility is not None and state.volatility_score > self.max_volatility:
            return False
        if self.min_transaction_count is not None and state.transaction_count < self.min_transaction_count:
            return False
        if self.spending_pattern is not None and state.spending_pattern != self.spending_pattern:
            return False
        if self.primary_category is not None and state.primary_category != self.primary_category:
            return False
        if self.updated_since is not None and (
            state.last_updated is None or state.last_updated < self.updated_since
        ):
            return False
        return True


class AnalyticsStore(ABC):
    """Durable, indexed document store; the source of truth."""

    @abstractmethod
    def get(self, account_id: str) -> AccountAnalytics | None:
        """Load the committed state for an account."""

    @abstractmethod
    def upsert(self, state: AccountAnalytics) -> None:
        """Insert or replace the state keyed by ``account_id``."""

    @abstractmethod
    def delete(self, account_id: str) -> bool:
        """Delete an account's state. Returns whether a record existed."""

    @abstractmethod
    def exists(self, account_id: str) -> bool:
        """Check whether a state is stored for an account."""

    @abstractmethod
    def find(self, query: AnalyticsQuery) -> list[AccountAnalytics]:
        """Run an indexed range/equality query."""

    def close(self) -> None:
        """Release connections."""


class AnalyticsCache(ABC):
    """Low-latency point-lookup cache of the last committed state."""

    @abstractmethod
    def get(self, account_id: str) -> AccountAnalytics | None:
        """Return the cached state, or None on a miss."""

    @abstractmethod
    def set(self, state: AccountAnalytics) -> None:
        """Replace the cached state for ``state.account_id``."""

    @abstractmethod
    def add(self, state: AccountAnalytics) -> bool:
        """Cache ``state`` only if no entry exists. Returns whether it was written."""

    @abstractmethod
    def delete(self, account_id: str) -> None:
        """Drop the cached state for an account."""

    def close(self) -> None:
        """Release connections."""
