"""Read-side access to account analytics, plus administrative delete/invalidate."""

import logging
from datetime import datetime
from decimal import Decimal

from account_analytics.exceptions import ConsistencyViolation, StoreError
from account_analytics.models.analytics import AccountAnalytics
from account_analytics.models.enums import SpendingPattern
from account_analytics.retry import RetryPolicy
from account_analytics.store.base import AnalyticsCache, AnalyticsQuery, AnalyticsStore

logger = logging.getLogger(__name__)


class AnalyticsQueryService:
    """Serve point lookups from the cache and range queries from the durable store.

    Reads never modify the durable store. A cache failure or an undecodable
    cache entry degrades to a durable read.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        cache: AnalyticsCache,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.retry = retry or RetryPolicy()

    def get_analytics(self, account_id: str) -> AccountAnalytics | None:
        """Latest committed analytics for an account, or None if it has none.

        Parameters
        ----------
        account_id : str
            Account to look up.

        Returns
        -------
        AccountAnalytics | None
            The cached state when present, otherwise the durable state.
        """
        cached = self._cached(account_id)
        if cached is not None:
            return cached

        state = self.retry.call("durable read", self.store.get, account_id)
        if state is not None:
            # Never replaces an entry written by the update path
            try:
                self.cache.add(state)
            except StoreError as e:
                logger.warning("Could not populate cache for account %s: %s", account_id, e)
        return state

    def _cached(self, account_id: str) -> AccountAnalytics | None:
        try:
            return self.cache.get(account_id)
        except ConsistencyViolation as e:
            logger.warning("Discarding undecodable cache entry for account %s: %s", account_id, e)
            try:
                self.cache.delete(account_id)
            except StoreError as delete_error:
                logger.warning("Could not drop cache entry for account %s: %s", account_id, delete_error)
        except StoreError as e:
            logger.warning("Cache read failed for account %s, using durable store: %s", account_id, e)
        return None

    def exists(self, account_id: str) -> bool:
        return self.retry.call("durable exists", self.store.exists, account_id)

    def find(self, query: AnalyticsQuery) -> list[AccountAnalytics]:
        return self.retry.call("durable query", self.store.find, query)

    def find_by_balance_range(
        self,
        min_balance: Decimal | None = None,
        max_balance: Decimal | None = None,
    ) -> list[AccountAnalytics]:
        return self.find(AnalyticsQuery(min_balance=min_balance, max_balance=max_balance))

    def find_by_volatility_range(
        self,
        min_volatility: Decimal | None = None,
        max_volatility: Decimal | None = None,
    ) -> list[AccountAnalytics]:
        return self.find(AnalyticsQuery(min_volatility=min_volatility, max_volatility=max_volatility))

    def find_by_min_transaction_count(self, min_count: int) -> list[AccountAnalytics]:
        return self.find(AnalyticsQuery(min_transaction_count=min_count))

    def find_by_spending_pattern(self, pattern: SpendingPattern | str) -> list[AccountAnalytics]:
        return self.find(AnalyticsQuery(spending_pattern=SpendingPattern(pattern)))

    def find_by_category(self, category: str) -> list[AccountAnalytics]:
        return self.find(AnalyticsQuery(primary_category=category))

    def find_recently_updated(self, since: datetime, limit: int | None = None) -> list[AccountAnalytics]:
        """Accounts whose analytics changed at or after ``since``, newest first."""
        return self.find(AnalyticsQuery(updated_since=since, limit=limit))

    def delete_analytics(self, account_id: str) -> bool:
        """Delete an account's analytics from the durable store, then the cache.

        Returns
        -------
        bool
            Whether a durable record existed.
        """
        existed = self.retry.call("durable delete", self.store.delete, account_id)
        self.retry.call("cache delete", self.cache.delete, account_id)
        logger.info("Deleted analytics for account %s (existed=%s)", account_id, existed)
        return existed

    def invalidate(self, account_id: str) -> None:
        """Drop the cached state; the next lookup reads the durable store."""
        self.retry.call("cache delete", self.cache.delete, account_id)
        logger.debug("Invalidated cache for account %s", account_id)
