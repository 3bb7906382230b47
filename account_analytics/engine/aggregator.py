"""Fold events into per-account aggregate state.

``fold`` is pure: it never mutates its input and performs no I/O. Every
accepted event produces a fresh ``AccountAnalytics``; a duplicate event
returns the input state object untouched.
"""

from dataclasses import replace
from decimal import ROUND_HALF_UP, Context, Decimal, Inexact, InvalidOperation, Overflow

from account_analytics.exceptions import ValidationError
from account_analytics.models.analytics import (
    NO_CATEGORY,
    UNKNOWN_CATEGORY,
    ZERO,
    AccountAnalytics,
    DailyBalance,
    day_key,
    month_key,
    remember_key,
)
from account_analytics.models.enums import EventKind
from account_analytics.models.events import EventEnvelope, TransactionPayload

CENT = Decimal("0.01")

DEFAULT_IDEMPOTENCY_WINDOW = 500
DEFAULT_MAX_DAILY_BUCKETS = 400

# Running sums must be exact: a sum that would need rounding raises Inexact
_EXACT = Context(prec=28, traps=[InvalidOperation, Overflow, Inexact])


def fold(
    state: AccountAnalytics,
    event: EventEnvelope,
    idempotency_window: int = DEFAULT_IDEMPOTENCY_WINDOW,
    max_daily_buckets: int = DEFAULT_MAX_DAILY_BUCKETS,
) -> AccountAnalytics:
    """Apply one event to an aggregate state.

    Parameters
    ----------
    state : AccountAnalytics
        Current state for the event's account.
    event : EventEnvelope
        Validated event envelope.
    idempotency_window : int
        Number of recent idempotency keys retained for duplicate suppression.
    max_daily_buckets : int
        Upper bound on ``daily_balances`` entries; oldest days are evicted.

    Returns
    -------
    AccountAnalytics
        New state, or ``state`` itself when the event was already applied.

    Raises
    ------
    ValidationError
        If the event belongs to another account or its kind is unsupported.
    ArithmeticError
        If a running sum cannot be held exactly or the average overflows.
    """
    if event.account_id != state.account_id:
        raise ValidationError(
            f"Event for account {event.account_id} cannot be folded into {state.account_id}"
        )

    if state.has_processed(event.idempotency_key):
        return state

    keys = remember_key(state.recent_idempotency_keys, event.idempotency_key, idempotency_window)

    if event.kind == EventKind.TRANSACTION_POSTED:
        if not isinstance(event.payload, TransactionPayload):
            raise ValidationError(f"TransactionPosted event {event.idempotency_key} has no transaction payload")
        return _apply_transaction(state, event, event.payload, keys, max_daily_buckets)

    if event.kind in (EventKind.ACCOUNT_OPENED, EventKind.ACCOUNT_STATUS_CHANGED):
        # Lifecycle events are tracked by the account-profile record, not here
        return replace(state, recent_idempotency_keys=keys)

    raise ValidationError(f"Unsupported event kind: {event.kind!r}")


def _apply_transaction(
    state: AccountAnalytics,
    event: EventEnvelope,
    payload: TransactionPayload,
    keys: list[str],
    max_daily_buckets: int,
) -> AccountAnalytics:
    amount = payload.amount
    occurred_at = event.occurred_at
    month = month_key(occurred_at)

    total_balance = _EXACT.add(state.total_balance, amount)
    total_income = state.total_income
    total_expenses = state.total_expenses
    deposit_count = state.deposit_count
    withdrawal_count = state.withdrawal_count
    largest_deposit = state.largest_deposit
    largest_withdrawal = state.largest_withdrawal
    monthly_income = dict(state.monthly_income)
    monthly_expenses = dict(state.monthly_expenses)

    if amount > 0:
        total_income = _EXACT.add(total_income, amount)
        deposit_count += 1
        if amount > largest_deposit:
            largest_deposit = amount
        monthly_income[month] = _EXACT.add(monthly_income.get(month, ZERO), amount)
    else:
        magnitude = abs(amount)
        total_expenses = _EXACT.add(total_expenses, magnitude)
        withdrawal_count += 1
        if magnitude > largest_withdrawal:
            largest_withdrawal = magnitude
        monthly_expenses[month] = _EXACT.add(monthly_expenses.get(month, ZERO), magnitude)

    transaction_count = state.transaction_count + 1

    first = state.first_transaction_date
    last = state.last_transaction_date
    if first is None or occurred_at < first:
        first = occurred_at
    if last is None or occurred_at > last:
        last = occurred_at

    daily_balances = _upsert_daily_balance(
        state.daily_balances, day_key(occurred_at), total_balance, event, max_daily_buckets
    )

    category_counts = dict(state.category_counts)
    if payload.category:
        category_counts[payload.category] = category_counts.get(payload.category, 0) + 1

    return replace(
        state,
        total_balance=total_balance,
        total_income=total_income,
        total_expenses=total_expenses,
        transaction_count=transaction_count,
        deposit_count=deposit_count,
        withdrawal_count=withdrawal_count,
        largest_deposit=largest_deposit,
        largest_withdrawal=largest_withdrawal,
        average_transaction_amount=average_amount(total_balance, transaction_count),
        first_transaction_date=first,
        last_transaction_date=last,
        daily_balances=daily_balances,
        monthly_income=monthly_income,
        monthly_expenses=monthly_expenses,
        category_counts=category_counts,
        primary_category=primary_category(category_counts, transaction_count),
        recent_idempotency_keys=keys,
    )


def _upsert_daily_balance(
    daily_balances: dict[str, DailyBalance],
    key: str,
    balance: Decimal,
    event: EventEnvelope,
    max_daily_buckets: int,
) -> dict[str, DailyBalance]:
    updated = dict(daily_balances)
    existing = updated.get(key)
    if existing is None or event.occurred_at >= existing.as_of:
        updated[key] = DailyBalance(balance=balance, as_of=event.occurred_at)

    if len(updated) > max_daily_buckets:
        for stale in sorted(updated)[: len(updated) - max_daily_buckets]:
            del updated[stale]
    return updated


def average_amount(total: Decimal, count: int) -> Decimal:
    """Average transaction amount, recomputed from totals rather than accumulated."""
    if count == 0:
        return ZERO
    return (total / count).quantize(CENT, rounding=ROUND_HALF_UP)


def primary_category(category_counts: dict[str, int], transaction_count: int) -> str:
    """Most frequent category; ties go to the alphabetically first name."""
    if transaction_count == 0:
        return NO_CATEGORY
    if not category_counts:
        return UNKNOWN_CATEGORY
    return min(category_counts.items(), key=lambda item: (-item[1], item[0]))[0]
