"""Domain models for account analytics."""

from account_analytics.models.analytics import (
    AccountAnalytics,
    DailyBalance,
    check_invariants,
    ensure_consistent,
)
from account_analytics.models.enums import (
    AccountStatus,
    EventKind,
    SpendingPattern,
    TransactionType,
)
from account_analytics.models.events import (
    AccountOpenedPayload,
    AccountStatusPayload,
    EventEnvelope,
    TransactionPayload,
    parse_envelope,
)

__all__ = [
    "AccountAnalytics",
    "AccountOpenedPayload",
    "AccountStatus",
    "AccountStatusPayload",
    "DailyBalance",
    "EventEnvelope",
    "EventKind",
    "SpendingPattern",
    "TransactionPayload",
    "TransactionType",
    "check_invariants",
    "ensure_consistent",
    "parse_envelope",
]
