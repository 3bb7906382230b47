"""Store coordinator: the read-fold-classify-write path for one event.

For each event the coordinator loads the committed state from the durable
store (never from the cache), suppresses duplicates, folds and classifies,
writes the durable store and only then refreshes the cache. The cache is
therefore never ahead of the durable store.

Failures do not escape ``process``: they come back as an ``UpdateResult``
whose ``status`` tells the caller whether to acknowledge, redeliver or halt.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from account_analytics.config import AnalyticsConfig
from account_analytics.engine.aggregator import fold
from account_analytics.engine.classifier import classify
from account_analytics.exceptions import (
    ConsistencyViolation,
    StoreError,
    ValidationError,
)
from account_analytics.models.analytics import AccountAnalytics, ensure_consistent
from account_analytics.models.events import EventEnvelope
from account_analytics.retry import RetryPolicy
from account_analytics.sinks.kafka import KafkaPublisher
from account_analytics.store.base import AnalyticsCache, AnalyticsStore

logger = logging.getLogger(__name__)


class UpdateStatus(str, Enum):
    ACKNOWLEDGED = "ACKNOWLEDGED"
    DUPLICATE = "DUPLICATE"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    HALTED = "HALTED"
    CANCELLED = "CANCELLED"
    # Skipped because an earlier event for the same account awaits redelivery
    DEFERRED = "DEFERRED"

    @property
    def acknowledged(self) -> bool:
        """Whether the transport may consider the event done."""
        return self in (UpdateStatus.ACKNOWLEDGED, UpdateStatus.DUPLICATE, UpdateStatus.REJECTED)


class UpdateStage(str, Enum):
    RECEIVED = "RECEIVED"
    LOADED = "LOADED"
    DEDUPLICATED = "DEDUPLICATED"
    FOLDED = "FOLDED"
    CLASSIFIED = "CLASSIFIED"
    DURABLY_WRITTEN = "DURABLY_WRITTEN"
    CACHE_REFRESHED = "CACHE_REFRESHED"
    ACKNOWLEDGED = "ACKNOWLEDGED"


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of processing one event.

    ``stage`` is the last stage reached; ``state`` is the committed state
    for acknowledged updates and duplicates.
    """

    account_id: str
    idempotency_key: str
    status: UpdateStatus
    stage: UpdateStage
    state: AccountAnalytics | None = None
    error: Exception | None = None
    cache_refreshed: bool = False

    @property
    def retryable(self) -> bool:
        return self.status in (UpdateStatus.FAILED, UpdateStatus.CANCELLED, UpdateStatus.DEFERRED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoreCoordinator:
    """Apply events to account analytics across the durable store and cache."""

    def __init__(
        self,
        store: AnalyticsStore,
        cache: AnalyticsCache,
        config: AnalyticsConfig | None = None,
        retry: RetryPolicy | None = None,
        publisher: KafkaPublisher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the coordinator.

        Parameters
        ----------
        store : AnalyticsStore
            Durable store; the source of truth.
        cache : AnalyticsCache
            Cache refreshed after each durable write.
        config : AnalyticsConfig | None
            Classifier and coordinator settings.
        retry : RetryPolicy | None
            Backoff for transient store failures.
        publisher : KafkaPublisher | None
            Optional sink for recalculated notifications.
        clock : Callable[[], datetime]
            Source of ``last_updated``/``calculated_at`` timestamps.
        """
        self.store = store
        self.cache = cache
        self.config = config or AnalyticsConfig()
        self.retry = retry or RetryPolicy(self.config.retry)
        self.publisher = publisher
        self._clock = clock

    def process(self, event: EventEnvelope, cancel: threading.Event | None = None) -> UpdateResult:
        """Run one event through load, fold, classify, durable write and cache refresh.

        Parameters
        ----------
        event : EventEnvelope
            Validated envelope. The caller guarantees no other update for the
            same account runs concurrently.
        cancel : threading.Event | None
            When set before the durable write, the update is abandoned.
            After the durable write it has no effect.

        Returns
        -------
        UpdateResult
            Terminal status, last stage reached and the committed state.
        """
        account_id = event.account_id
        key = event.idempotency_key
        stage = UpdateStage.RECEIVED

        def result(status: UpdateStatus, **kwargs) -> UpdateResult:
            return UpdateResult(account_id, key, status, stage, **kwargs)

        try:
            state = self._load(account_id)
            stage = UpdateStage.LOADED

            if state.has_processed(key):
                logger.debug("Duplicate event %s for account %s acknowledged", key, account_id)
                return result(UpdateStatus.DUPLICATE, state=state)
            stage = UpdateStage.DEDUPLICATED

            folded = fold(
                state,
                event,
                idempotency_window=self.config.coordinator.idempotency_window,
                max_daily_buckets=self.config.coordinator.max_daily_buckets,
            )
            stage = UpdateStage.FOLDED

            classification = classify(folded, self.config.classifier)
            now = self._clock()
            updated = ensure_consistent(replace(
                folded,
                volatility_score=classification.volatility_score,
                spending_pattern=classification.spending_pattern,
                last_updated=now,
                calculated_at=now,
            ))
            stage = UpdateStage.CLASSIFIED

            if cancel is not None and cancel.is_set():
                logger.info("Update %s for account %s cancelled before durable write", key, account_id)
                return result(UpdateStatus.CANCELLED)

            self.retry.call("durable write", self.store.upsert, updated)
            stage = UpdateStage.DURABLY_WRITTEN
        except ValidationError as e:
            logger.warning("Rejected event %s for account %s: %s", key, account_id, e)
            return result(UpdateStatus.REJECTED, error=e)
        except ConsistencyViolation as e:
            logger.critical(
                "ALERT consistency violation for account %s, halting its lane: %s",
                account_id,
                e,
                extra={"extra": {"account_id": account_id, "violations": e.violations}},
            )
            return result(UpdateStatus.HALTED, error=e)
        except StoreError as e:
            logger.error("Update %s for account %s failed at %s: %s", key, account_id, stage.value, e)
            return result(UpdateStatus.FAILED, error=e)
        except ArithmeticError as e:
            # The stored state cannot absorb this event
            violation = ConsistencyViolation(account_id, [f"decimal arithmetic failed at {stage.value}: {e!r}"])
            logger.critical(
                "ALERT arithmetic failure for account %s on event %s, halting its lane: %s",
                account_id,
                key,
                violation,
            )
            return result(UpdateStatus.HALTED, error=violation)

        # Committed: the cache refresh is attempted regardless of cancellation
        cache_refreshed = self._refresh_cache(updated)
        if cache_refreshed:
            stage = UpdateStage.CACHE_REFRESHED

        if self.publisher is not None and self.config.coordinator.publish_notifications:
            self.publisher.publish_recalculated(updated)

        logger.info(
            "Updated analytics for account %s: event=%s kind=%s balance=%s count=%d pattern=%s volatility=%s",
            account_id,
            key,
            event.kind.value,
            updated.total_balance,
            updated.transaction_count,
            updated.spending_pattern.value,
            updated.volatility_score,
        )
        stage = UpdateStage.ACKNOWLEDGED
        return result(UpdateStatus.ACKNOWLEDGED, state=updated, cache_refreshed=cache_refreshed)

    def _load(self, account_id: str) -> AccountAnalytics:
        state = self.retry.call("durable read", self.store.get, account_id)
        if state is None:
            return AccountAnalytics.empty(account_id)
        return ensure_consistent(state)

    def _refresh_cache(self, state: AccountAnalytics) -> bool:
        try:
            self.retry.call("cache refresh", self.cache.set, state)
        except StoreError as e:
            logger.warning(
                "Cache refresh failed for account %s, cache left stale: %s",
                state.account_id,
                e,
            )
            return False
        return True
