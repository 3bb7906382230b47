"""Redis cache for the latest committed analytics per account."""

import logging

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from account_analytics.config import RedisConfig
from account_analytics.exceptions import StoreError, TransientStoreError
from account_analytics.models.analytics import AccountAnalytics
from account_analytics.store.base import AnalyticsCache
from account_analytics.store.serialization import from_cache_payload, to_cache_payload

logger = logging.getLogger(__name__)


class RedisAnalyticsCache(AnalyticsCache):
    """Point-lookup cache keyed by ``<prefix><account_id>`` with a TTL."""

    def __init__(self, config: RedisConfig, client: redis.Redis | None = None) -> None:
        self.config = config
        self.client = client or redis.Redis(
            connection_pool=redis.ConnectionPool(
                host=config.host,
                port=config.port,
                db=config.db,
                password=config.password,
                socket_timeout=config.socket_timeout_seconds,
                socket_connect_timeout=config.socket_timeout_seconds,
                max_connections=config.max_connections,
                decode_responses=True,
            )
        )

    def key(self, account_id: str) -> str:
        return f"{self.config.key_prefix}{account_id}"

    def _translate(self, operation: str, error: RedisError) -> StoreError:
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            return TransientStoreError(f"Redis {operation} failed: {error}")
        return StoreError(f"Redis {operation} failed: {error}")

    def get(self, account_id: str) -> AccountAnalytics | None:
        try:
            payload = self.client.get(self.key(account_id))
        except RedisError as e:
            raise self._translate("get", e) from e
        if payload is None:
            return None
        return from_cache_payload(payload)

    def set(self, state: AccountAnalytics) -> None:
        try:
            self.client.set(
                self.key(state.account_id),
                to_cache_payload(state),
                ex=self.config.ttl_seconds,
            )
        except RedisError as e:
            raise self._translate("set", e) from e

    def add(self, state: AccountAnalytics) -> bool:
        try:
            written = self.client.set(
                self.key(state.account_id),
                to_cache_payload(state),
                ex=self.config.ttl_seconds,
                nx=True,
            )
        except RedisError as e:
            raise self._translate("add", e) from e
        return bool(written)

    def delete(self, account_id: str) -> None:
        try:
            self.client.delete(self.key(account_id))
        except RedisError as e:
            raise self._translate("delete", e) from e

    def close(self) -> None:
        self.client.close()
        logger.info("Redis client closed")
