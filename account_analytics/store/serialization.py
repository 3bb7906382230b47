"""Serialization adapters between ``AccountAnalytics`` and the two stores.

There is one in-memory type and two representations of it:

- the durable document (snake_case keys, decimals as strings) stored as JSONB;
- the cache payload (camelCase JSON text) read by dashboards and services.
"""

import json
from dataclasses import fields
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from account_analytics.exceptions import ConsistencyViolation, ValidationError
from account_analytics.models.analytics import AccountAnalytics, DailyBalance
from account_analytics.models.enums import SpendingPattern
from account_analytics.models.events import parse_timestamp

SCHEMA_VERSION = 1

_DECIMAL_FIELDS = {
    "total_balance",
    "total_income",
    "total_expenses",
    "largest_deposit",
    "largest_withdrawal",
    "average_transaction_amount",
    "volatility_score",
}
_INT_FIELDS = {"transaction_count", "deposit_count", "withdrawal_count"}
_TIMESTAMP_FIELDS = {"first_transaction_date", "last_transaction_date", "last_updated", "calculated_at"}


def serialize_value(value: Any) -> Any:
    """Serialize a value for JSON output."""
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, DailyBalance):
        return {"balance": str(value.balance), "as_of": value.as_of.isoformat()}
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, date):
        return value.isoformat()
    elif isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def to_document(state: AccountAnalytics) -> dict[str, Any]:
    """Render a state as the durable-store document."""
    document = {f.name: serialize_value(getattr(state, f.name)) for f in fields(state)}
    document["schema_version"] = SCHEMA_VERSION
    return document


def from_document(document: dict[str, Any]) -> AccountAnalytics:
    """Rebuild a state from a durable-store document.

    Raises
    ------
    ConsistencyViolation
        If the document cannot be decoded into a valid state.
    """
    account_id = str(document.get("account_id") or "")
    try:
        values: dict[str, Any] = {"account_id": account_id}
        for name in _DECIMAL_FIELDS:
            if document.get(name) is not None:
                values[name] = Decimal(str(document[name]))
        for name in _INT_FIELDS:
            if document.get(name) is not None:
                values[name] = int(document[name])
        for name in _TIMESTAMP_FIELDS:
            if document.get(name) is not None:
                values[name] = parse_timestamp(document[name], name)

        values["daily_balances"] = {
            key: DailyBalance(
                balance=Decimal(str(entry["balance"])),
                as_of=parse_timestamp(entry["as_of"], "as_of"),
            )
            for key, entry in (document.get("daily_balances") or {}).items()
        }
        values["monthly_income"] = {
            key: Decimal(str(v)) for key, v in (document.get("monthly_income") or {}).items()
        }
        values["monthly_expenses"] = {
            key: Decimal(str(v)) for key, v in (document.get("monthly_expenses") or {}).items()
        }
        values["category_counts"] = {
            key: int(v) for key, v in (document.get("category_counts") or {}).items()
        }
        if document.get("primary_category") is not None:
            values["primary_category"] = str(document["primary_category"])
        if document.get("spending_pattern") is not None:
            values["spending_pattern"] = SpendingPattern(document["spending_pattern"])
        values["recent_idempotency_keys"] = [
            str(k) for k in (document.get("recent_idempotency_keys") or [])
        ]
    except ConsistencyViolation:
        raise
    except (InvalidOperation, KeyError, TypeError, ValueError, AttributeError, ValidationError) as e:
        raise ConsistencyViolation(account_id, [f"unreadable document: {e}"]) from e

    return AccountAnalytics(**values)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)


def to_cache_payload(state: AccountAnalytics) -> str:
    """Render a state as the JSON text stored in the cache."""
    document = to_document(state)
    document["daily_balances"] = {
        day: {"balance": entry["balance"], "asOf": entry["as_of"]}
        for day, entry in document["daily_balances"].items()
    }
    return json.dumps({_camel(k): v for k, v in document.items()}, separators=(",", ":"))


def from_cache_payload(payload: str | bytes) -> AccountAnalytics:
    """Rebuild a state from its cached JSON text."""
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConsistencyViolation("", [f"unreadable cache payload: {e}"]) from e
    if not isinstance(data, dict):
        raise ConsistencyViolation("", ["cache payload is not an object"])

    document = {_snake(k): v for k, v in data.items()}
    daily = document.get("daily_balances") or {}
    if isinstance(daily, dict):
        document["daily_balances"] = {
            day: {"balance": entry.get("balance"), "as_of": entry.get("asOf")}
            if isinstance(entry, dict) else entry
            for day, entry in daily.items()
        }
    return from_document(document)
