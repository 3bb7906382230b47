"""PostgreSQL durable store for account analytics.

Each account is one row keyed by ``account_id``. The full state lives in a
JSONB ``document`` column; the fields used by read-side queries are
projected into indexed columns on every upsert.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool, PoolTimeout

from account_analytics.config import PostgresConfig
from account_analytics.exceptions import StoreError, TransientStoreError
from account_analytics.models.analytics import AccountAnalytics
from account_analytics.store.base import AnalyticsQuery, AnalyticsStore
from account_analytics.store.serialization import from_document, to_document

logger = logging.getLogger(__name__)

# Projected columns, in upsert order
COLUMNS = (
    "account_id",
    "total_balance",
    "volatility_score",
    "transaction_count",
    "spending_pattern",
    "primary_category",
    "last_transaction_date",
    "last_updated",
    "document",
)

CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    account_id TEXT PRIMARY KEY,
    total_balance NUMERIC NOT NULL,
    volatility_score NUMERIC NOT NULL,
    transaction_count BIGINT NOT NULL,
    spending_pattern TEXT NOT NULL,
    primary_category TEXT NOT NULL,
    last_transaction_date TIMESTAMPTZ,
    last_updated TIMESTAMPTZ,
    document JSONB NOT NULL
)
"""

# index suffix -> column list
INDEXES = {
    "total_balance": "total_balance",
    "volatility_score": "volatility_score",
    "transaction_count": "transaction_count",
    "spending_pattern": "spending_pattern",
    "primary_category": "primary_category",
    "last_transaction_date": "last_transaction_date",
    "last_updated": "last_updated",
    "pattern_balance": "spending_pattern, total_balance",
    "account_updated": "account_id, last_updated DESC",
}


class PostgresAnalyticsStore(AnalyticsStore):
    """Durable analytics store backed by a PostgreSQL JSONB table."""

    def __init__(self, config: PostgresConfig, pool: ConnectionPool | None = None) -> None:
        """Initialize the store.

        Parameters
        ----------
        config : PostgresConfig
            Connection and pool settings.
        pool : ConnectionPool | None
            Existing pool to share; one is created from ``config`` otherwise.
        """
        self.config = config
        self.table = sql.Identifier(config.table)
        self.pool = pool or ConnectionPool(
            config.connection_string,
            min_size=config.min_pool_size,
            max_size=config.max_pool_size,
            timeout=config.connect_timeout_seconds,
            kwargs={
                "connect_timeout": config.connect_timeout_seconds,
                "options": f"-c statement_timeout={config.statement_timeout_ms}",
            },
            open=True,
        )

    @contextmanager
    def _connection(self, operation: str) -> Iterator[Any]:
        """Borrow a pooled connection, translating driver errors."""
        try:
            with self.pool.connection() as conn:
                yield conn
        except PoolTimeout as e:
            raise TransientStoreError(f"Postgres {operation} timed out waiting for a connection") from e
        except psycopg.OperationalError as e:
            raise TransientStoreError(f"Postgres {operation} failed: {e}") from e
        except psycopg.Error as e:
            raise StoreError(f"Postgres {operation} failed: {e}") from e

    def ensure_schema(self) -> None:
        """Create the analytics table and its indexes if missing."""
        with self._connection("ensure_schema") as conn:
            with conn.cursor() as cur:
                cur.execute(sql.SQL(CREATE_TABLE).format(table=self.table))
                for suffix, columns in INDEXES.items():
                    cur.execute(
                        sql.SQL("CREATE INDEX IF NOT EXISTS {name} ON {table} ({columns})").format(
                            name=sql.Identifier(f"idx_{self.config.table}_{suffix}"),
                            table=self.table,
                            columns=sql.SQL(columns),
                        )
                    )
        logger.info("Schema ready: table=%s, indexes=%d", self.config.table, len(INDEXES))

    def get(self, account_id: str) -> AccountAnalytics | None:
        with self._connection("get") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("SELECT document FROM {table} WHERE account_id = %s").format(table=self.table),
                    (account_id,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return from_document(row[0])

    def upsert(self, state: AccountAnalytics) -> None:
        statement = sql.SQL(
            "INSERT INTO {table} ({columns}) VALUES ({values}) "
            "ON CONFLICT (account_id) DO UPDATE SET {updates}"
        ).format(
            table=self.table,
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in COLUMNS),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in COLUMNS),
            updates=sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
                for c in COLUMNS[1:]
            ),
        )
        params = (
            state.account_id,
            state.total_balance,
            state.volatility_score,
            state.transaction_count,
            state.spending_pattern.value,
            state.primary_category,
            state.last_transaction_date,
            state.last_updated,
            Jsonb(to_document(state)),
        )
        with self._connection("upsert") as conn:
            with conn.cursor() as cur:
                cur.execute(statement, params)
        logger.debug("Upserted analytics for account %s", state.account_id)

    def delete(self, account_id: str) -> bool:
        with self._connection("delete") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("DELETE FROM {table} WHERE account_id = %s").format(table=self.table),
                    (account_id,),
                )
                return cur.rowcount > 0

    def exists(self, account_id: str) -> bool:
        with self._connection("exists") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("SELECT 1 FROM {table} WHERE account_id = %s").format(table=self.table),
                    (account_id,),
                )
                return cur.fetchone() is not None

    def find(self, query: AnalyticsQuery) -> list[AccountAnalytics]:
        clauses, params = self._where(query)
        statement = sql.SQL("SELECT document FROM {table}").format(table=self.table)
        if clauses:
            statement += sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses)
        statement += sql.SQL(" ORDER BY last_updated DESC NULLS LAST, account_id")
        if query.limit is not None:
            statement += sql.SQL(" LIMIT %s")
            params.append(query.limit)

        with self._connection("find") as conn:
            with conn.cursor() as cur:
                cur.execute(statement, params)
                rows = cur.fetchall()
        return [from_document(row[0]) for row in rows]

    @staticmethod
    def _where(query: AnalyticsQuery) -> tuple[list[sql.Composable], list[Any]]:
        conditions = [
            ("total_balance", ">=", query.min_balance),
            ("total_balance", "<=", query.max_balance),
            ("volatility_score", ">=", query.min_volatility),
            ("volatility_score", "<=", query.max_volatility),
            ("transaction_count", ">=", query.min_transaction_count),
            ("spending_pattern", "=", query.spending_pattern.value if query.spending_pattern else None),
            ("primary_category", "=", query.primary_category),
            ("last_updated", ">=", query.updated_since),
        ]
        clauses: list[sql.Composable] = []
        params: list[Any] = []
        for column, operator, value in conditions:
            if value is None:
                continue
            clauses.append(sql.SQL("{col} " + operator + " %s").format(col=sql.Identifier(column)))
            params.append(value)
        return clauses, params

    def close(self) -> None:
        self.pool.close()
        logger.info("Postgres pool closed")
