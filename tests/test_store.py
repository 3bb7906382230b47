"""Tests for the durable store and cache adapters."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import psycopg
import pytest
import redis
from psycopg_pool import PoolTimeout

from account_analytics.config import PostgresConfig, RedisConfig
from account_analytics.exceptions import ConsistencyViolation, StoreError, TransientStoreError
from account_analytics.models.analytics import AccountAnalytics
from account_analytics.models.enums import SpendingPattern
from account_analytics.store import AnalyticsQuery, InMemoryAnalyticsCache, InMemoryAnalyticsStore
from account_analytics.store.postgres import COLUMNS, INDEXES, PostgresAnalyticsStore
from account_analytics.store.redis_cache import RedisAnalyticsCache
from account_analytics.store.serialization import to_cache_payload, to_document


def _analytics(account_id: str, balance: str = "0", **kwargs) -> AccountAnalytics:
    amount = Decimal(balance)
    income = amount if amount > 0 else Decimal("0")
    return AccountAnalytics(
        account_id=account_id,
        total_balance=amount,
        total_income=income,
        total_expenses=income - amount,
        **kwargs,
    )


class TestAnalyticsQuery:
    def test_empty_query_matches_everything(self) -> None:
        assert AnalyticsQuery().matches(_analytics("a"))

    def test_balance_range(self) -> None:
        query = AnalyticsQuery(min_balance=Decimal("100"), max_balance=Decimal("200"))

        assert query.matches(_analytics("a", "150"))
        assert query.matches(_analytics("a", "200"))
        assert not query.matches(_analytics("a", "99.99"))
        assert not query.matches(_analytics("a", "-500"))

    def test_updated_since_skips_never_updated(self) -> None:
        query = AnalyticsQuery(updated_since=datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert not query.matches(_analytics("a"))
        assert query.matches(_analytics("a", last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc)))

    def test_pattern_and_category(self) -> None:
        state = _analytics("a", spending_pattern=SpendingPattern.STABLE, primary_category="rent")

        assert AnalyticsQuery(spending_pattern=SpendingPattern.STABLE, primary_category="rent").matches(state)
        assert not AnalyticsQuery(spending_pattern=SpendingPattern.VOLATILE).matches(state)


class TestInMemoryAnalyticsStore:
    def test_upsert_get_delete(self) -> None:
        store = InMemoryAnalyticsStore()
        state = _analytics("acct-1", "10")

        store.upsert(state)

        assert store.exists("acct-1")
        assert store.get("acct-1") == state
        assert store.get("acct-1") is not state
        assert store.writes == 1
        assert store.delete("acct-1") is True
        assert store.delete("acct-1") is False
        assert store.get("acct-1") is None

    def test_find_orders_newest_first(self) -> None:
        store = InMemoryAnalyticsStore()
        store.upsert(_analytics("old", "5", last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc)))
        store.upsert(_analytics("new", "5", last_updated=datetime(2024, 3, 1, tzinfo=timezone.utc)))
        store.upsert(_analytics("never", "5"))
        store.upsert(_analytics("poor", "-5"))

        results = store.find(AnalyticsQuery(min_balance=Decimal("0")))

        assert [s.account_id for s in results] == ["new", "old", "never"]
        assert len(store.find(AnalyticsQuery(limit=2))) == 2


class TestInMemoryAnalyticsCache:
    def test_set_get_delete(self) -> None:
        cache = InMemoryAnalyticsCache()
        state = _analytics("acct-1", "10")

        cache.set(state)

        assert cache.get("acct-1") == state
        assert cache.entries["acct-1"] == to_cache_payload(state)
        cache.delete("acct-1")
        cache.delete("acct-1")
        assert cache.get("acct-1") is None

    def test_add_only_fills_empty_slot(self) -> None:
        cache = InMemoryAnalyticsCache()
        newer = _analytics("acct-1", "20")
        cache.set(newer)

        assert cache.add(_analytics("acct-1", "10")) is False
        assert cache.get("acct-1") == newer
        assert cache.add(_analytics("acct-2", "10")) is True
        assert cache.get("acct-2") == _analytics("acct-2", "10")


@pytest.fixture
def pg_pool() -> MagicMock:
    return MagicMock()


@pytest.fixture
def pg_cursor(pg_pool: MagicMock) -> MagicMock:
    conn = pg_pool.connection.return_value.__enter__.return_value
    return conn.cursor.return_value.__enter__.return_value


@pytest.fixture
def pg_store(pg_pool: MagicMock) -> PostgresAnalyticsStore:
    return PostgresAnalyticsStore(PostgresConfig(), pool=pg_pool)


class TestPostgresAnalyticsStore:
    """Tests for PostgresAnalyticsStore using a mocked pool."""

    @patch("account_analytics.store.postgres.ConnectionPool")
    def test_creates_pool_from_config(self, mock_pool_class: MagicMock) -> None:
        config = PostgresConfig(host="db", max_pool_size=4, statement_timeout_ms=2500)

        store = PostgresAnalyticsStore(config)

        assert store.pool is mock_pool_class.return_value
        args, kwargs = mock_pool_class.call_args
        assert args[0] == "postgresql://postgres:postgres@db:5432/analytics"
        assert kwargs["max_size"] == 4
        assert kwargs["kwargs"]["options"] == "-c statement_timeout=2500"

    def test_ensure_schema(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_store.ensure_schema()

        assert pg_cursor.execute.call_count == 1 + len(INDEXES)

    def test_get_missing(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_cursor.fetchone.return_value = None

        assert pg_store.get("acct-1") is None
        assert pg_cursor.execute.call_args[0][1] == ("acct-1",)

    def test_get_decodes_document(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        state = _analytics("acct-1", "25.50")
        pg_cursor.fetchone.return_value = (to_document(state),)

        assert pg_store.get("acct-1") == state

    def test_get_corrupt_document(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_cursor.fetchone.return_value = ({"account_id": "acct-1", "transaction_count": "many"},)

        with pytest.raises(ConsistencyViolation):
            pg_store.get("acct-1")

    def test_upsert_projects_indexed_columns(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        updated = datetime(2024, 5, 1, tzinfo=timezone.utc)
        state = _analytics(
            "acct-1",
            "100",
            volatility_score=Decimal("0.25"),
            spending_pattern=SpendingPattern.STABLE,
            last_updated=updated,
        )

        pg_store.upsert(state)

        params = pg_cursor.execute.call_args[0][1]
        assert len(params) == len(COLUMNS)
        assert params[:6] == ("acct-1", Decimal("100"), Decimal("0.25"), 0, "STABLE", "NONE")
        assert params[7] == updated
        assert params[8].obj == to_document(state)

    def test_delete_reports_existence(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_cursor.rowcount = 1
        assert pg_store.delete("acct-1") is True

        pg_cursor.rowcount = 0
        assert pg_store.delete("acct-1") is False

    def test_exists(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_cursor.fetchone.return_value = (1,)

        assert pg_store.exists("acct-1") is True

    def test_find_binds_only_set_filters(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_cursor.fetchall.return_value = [(to_document(_analytics("a", "150")),)]
        query = AnalyticsQuery(
            min_balance=Decimal("100"),
            spending_pattern=SpendingPattern.VARIABLE,
            limit=10,
        )

        results = pg_store.find(query)

        assert [s.account_id for s in results] == ["a"]
        assert pg_cursor.execute.call_args[0][1] == [Decimal("100"), "VARIABLE", 10]

    def test_where_clauses(self) -> None:
        clauses, params = PostgresAnalyticsStore._where(
            AnalyticsQuery(
                min_volatility=Decimal("0.1"),
                max_volatility=Decimal("0.9"),
                primary_category="rent",
            )
        )

        assert len(clauses) == 3
        assert params == [Decimal("0.1"), Decimal("0.9"), "rent"]

    def test_operational_error_is_transient(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_cursor.execute.side_effect = psycopg.OperationalError("server closed the connection")

        with pytest.raises(TransientStoreError):
            pg_store.get("acct-1")

    def test_pool_timeout_is_transient(self, pg_store: PostgresAnalyticsStore, pg_pool: MagicMock) -> None:
        pg_pool.connection.side_effect = PoolTimeout("no connection")

        with pytest.raises(TransientStoreError, match="timed out"):
            pg_store.exists("acct-1")

    def test_other_driver_errors_are_permanent(self, pg_store: PostgresAnalyticsStore, pg_cursor: MagicMock) -> None:
        pg_cursor.execute.side_effect = psycopg.ProgrammingError("syntax error")

        with pytest.raises(StoreError) as exc_info:
            pg_store.upsert(_analytics("acct-1"))

        assert not isinstance(exc_info.value, TransientStoreError)

    def test_close(self, pg_store: PostgresAnalyticsStore, pg_pool: MagicMock) -> None:
        pg_store.close()

        pg_pool.close.assert_called_once()


class TestRedisAnalyticsCache:
    """Tests for RedisAnalyticsCache using a mocked client."""

    @pytest.fixture
    def client(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def cache(self, client: MagicMock) -> RedisAnalyticsCache:
        return RedisAnalyticsCache(RedisConfig(key_prefix="test:", ttl_seconds=60), client=client)

    def test_key(self, cache: RedisAnalyticsCache) -> None:
        assert cache.key("acct-1") == "test:acct-1"

    def test_set_uses_ttl(self, cache: RedisAnalyticsCache, client: MagicMock) -> None:
        state = _analytics("acct-1", "10")

        cache.set(state)

        client.set.assert_called_once_with("test:acct-1", to_cache_payload(state), ex=60)

    def test_get_hit_and_miss(self, cache: RedisAnalyticsCache, client: MagicMock) -> None:
        state = _analytics("acct-1", "10")
        client.get.return_value = to_cache_payload(state)

        assert cache.get("acct-1") == state

        client.get.return_value = None
        assert cache.get("acct-1") is None

    def test_add_sets_if_absent(self, cache: RedisAnalyticsCache, client: MagicMock) -> None:
        state = _analytics("acct-1", "10")
        client.set.return_value = None

        assert cache.add(state) is False
        client.set.assert_called_once_with("test:acct-1", to_cache_payload(state), ex=60, nx=True)

        client.set.return_value = True
        assert cache.add(state) is True

    def test_delete(self, cache: RedisAnalyticsCache, client: MagicMock) -> None:
        cache.delete("acct-1")

        client.delete.assert_called_once_with("test:acct-1")

    @pytest.mark.parametrize(
        "error",
        [redis.exceptions.ConnectionError("refused"), redis.exceptions.TimeoutError("slow")],
    )
    def test_connectivity_errors_are_transient(
        self, cache: RedisAnalyticsCache, client: MagicMock, error: Exception
    ) -> None:
        client.set.side_effect = error

        with pytest.raises(TransientStoreError):
            cache.set(_analytics("acct-1"))

    def test_other_errors_are_permanent(self, cache: RedisAnalyticsCache, client: MagicMock) -> None:
        client.get.side_effect = redis.exceptions.ResponseError("WRONGTYPE")

        with pytest.raises(StoreError) as exc_info:
            cache.get("acct-1")

        assert not isinstance(exc_info.value, TransientStoreError)

    @patch("account_analytics.store.redis_cache.redis.Redis")
    @patch("account_analytics.store.redis_cache.redis.ConnectionPool")
    def test_builds_pooled_client(self, mock_pool_class: MagicMock, mock_redis_class: MagicMock) -> None:
        RedisAnalyticsCache(RedisConfig(host="cache", max_connections=5))

        kwargs = mock_pool_class.call_args.kwargs
        assert kwargs["host"] == "cache"
        assert kwargs["max_connections"] == 5
        assert kwargs["decode_responses"] is True
        mock_redis_class.assert_called_once_with(connection_pool=mock_pool_class.return_value)
