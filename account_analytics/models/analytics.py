"""Per-account aggregate state and its invariants."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from account_analytics.exceptions import ConsistencyViolation
from account_analytics.models.enums import SpendingPattern

MONTH_KEY_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
DAY_KEY_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")

NO_CATEGORY = "NONE"
UNKNOWN_CATEGORY = "UNKNOWN"

ZERO = Decimal("0")


def month_key(moment: datetime) -> str:
    """Return the ``YYYY-MM`` bucket key for a timestamp."""
    return moment.strftime("%Y-%m")


def day_key(moment: datetime) -> str:
    """Return the ``YYYY-MM-DD`` bucket key for a timestamp."""
    return moment.strftime("%Y-%m-%d")


def is_month_key(key: str) -> bool:
    return bool(MONTH_KEY_PATTERN.match(key))


def is_day_key(key: str) -> bool:
    return bool(DAY_KEY_PATTERN.match(key))


@dataclass(frozen=True)
class DailyBalance:
    """Balance snapshot for one calendar day.

    ``as_of`` is the business time of the transaction that produced the
    snapshot; a later ``occurred_at`` replaces it regardless of arrival order.
    """

    balance: Decimal
    as_of: datetime


@dataclass
class AccountAnalytics:
    """Analytics aggregate for one account.

    The same record is the durable document (keyed by ``account_id``) and
    the cached value; both stores hold serialized copies of this type.
    """

    account_id: str

    # Running totals (income and expenses are non-negative magnitudes)
    total_balance: Decimal = ZERO
    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO

    # Counters
    transaction_count: int = 0
    deposit_count: int = 0
    withdrawal_count: int = 0

    # Extrema and derived values
    largest_deposit: Decimal = ZERO
    largest_withdrawal: Decimal = ZERO
    average_transaction_amount: Decimal = ZERO

    first_transaction_date: datetime | None = None
    last_transaction_date: datetime | None = None

    # Windowed breakdowns
    daily_balances: dict[str, DailyBalance] = field(default_factory=dict)
    monthly_income: dict[str, Decimal] = field(default_factory=dict)
    monthly_expenses: dict[str, Decimal] = field(default_factory=dict)
    category_counts: dict[str, int] = field(default_factory=dict)
    primary_category: str = NO_CATEGORY

    # Classification outputs
    volatility_score: Decimal = ZERO
    spending_pattern: SpendingPattern = SpendingPattern.INACTIVE

    # Bookkeeping: oldest key first
    recent_idempotency_keys: list[str] = field(default_factory=list)
    last_updated: datetime | None = None
    calculated_at: datetime | None = None

    def __post_init__(self) -> None:
        bad_keys = [k for k in self.daily_balances if not is_day_key(k)]
        bad_keys += [k for k in self.monthly_income if not is_month_key(k)]
        bad_keys += [k for k in self.monthly_expenses if not is_month_key(k)]
        if bad_keys:
            raise ConsistencyViolation(
                self.account_id,
                [f"non-canonical bucket keys: {sorted(bad_keys)}"],
            )

    @classmethod
    def empty(cls, account_id: str) -> "AccountAnalytics":
        """Create the default zero state for an account seen for the first time."""
        return cls(account_id=account_id)

    def has_processed(self, idempotency_key: str) -> bool:
        """Check whether an event key is within the duplicate-detection window."""
        return idempotency_key in self.recent_idempotency_keys

    def month_keys(self) -> list[str]:
        """All months with income or expense activity, oldest first."""
        return sorted(set(self.monthly_income) | set(self.monthly_expenses))


def remember_key(keys: list[str], key: str, capacity: int) -> list[str]:
    """Append a key to a bounded ring, evicting the oldest entries.

    Returns a new list; the input is not modified.
    """
    updated = [k for k in keys if k != key]
    updated.append(key)
    if len(updated) > capacity:
        updated = updated[len(updated) - capacity:]
    return updated


def check_invariants(state: AccountAnalytics) -> list[str]:
    """Return a description of every invariant the state breaks."""
    violations = []

    if not state.account_id:
        violations.append("account_id is empty")

    counts = (state.transaction_count, state.deposit_count, state.withdrawal_count)
    if any(c < 0 for c in counts):
        violations.append(f"negative counter in {counts}")
    if state.transaction_count != state.deposit_count + state.withdrawal_count:
        violations.append(
            f"transaction_count {state.transaction_count} != "
            f"deposit_count {state.deposit_count} + withdrawal_count {state.withdrawal_count}"
        )

    if state.total_income < 0 or state.total_expenses < 0:
        violations.append("total_income and total_expenses must be non-negative")
    if state.total_balance != state.total_income - state.total_expenses:
        violations.append(
            f"total_balance {state.total_balance} != "
            f"total_income {state.total_income} - total_expenses {state.total_expenses}"
        )

    if state.largest_deposit < 0 or state.largest_withdrawal < 0:
        violations.append("extrema must be non-negative magnitudes")

    first, last = state.first_transaction_date, state.last_transaction_date
    if first is not None and last is not None and first > last:
        violations.append(f"first_transaction_date {first} is after last_transaction_date {last}")

    for key in state.daily_balances:
        if not is_day_key(key):
            violations.append(f"daily bucket key {key!r} is not YYYY-MM-DD")
    for key in list(state.monthly_income) + list(state.monthly_expenses):
        if not is_month_key(key):
            violations.append(f"monthly bucket key {key!r} is not YYYY-MM")

    if state.volatility_score < 0:
        violations.append(f"volatility_score {state.volatility_score} is negative")
    if not isinstance(state.spending_pattern, SpendingPattern):
        violations.append(f"spending_pattern {state.spending_pattern!r} is not a known label")

    if len(set(state.recent_idempotency_keys)) != len(state.recent_idempotency_keys):
        violations.append("recent_idempotency_keys contains duplicates")

    return violations


def ensure_consistent(state: AccountAnalytics) -> AccountAnalytics:
    """Raise ``ConsistencyViolation`` unless every invariant holds."""
    violations = check_invariants(state)
    if violations:
        raise ConsistencyViolation(state.account_id, violations)
    return state
