"""Volatility scoring and spending-pattern classification."""

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from account_analytics.config import ClassifierConfig
from account_analytics.models.analytics import ZERO, AccountAnalytics
from account_analytics.models.enums import SpendingPattern

SCORE_QUANTUM = Decimal("0.0001")
SEASONAL_LAGS = (3, 4, 6, 12)


class Classification(NamedTuple):
    volatility_score: Decimal
    spending_pattern: SpendingPattern


def monthly_nets(state: AccountAnalytics, window_months: int | None = None) -> list[Decimal]:
    """Net cash flow per month (income minus expenses), oldest month first.

    Parameters
    ----------
    state : AccountAnalytics
        Aggregate state to read.
    window_months : int | None
        Keep only the most recent N months; ``None`` keeps all of them.
    """
    months = state.month_keys()
    if window_months is not None:
        months = months[-window_months:]
    return [
        state.monthly_income.get(m, ZERO) - state.monthly_expenses.get(m, ZERO)
        for m in months
    ]


def consecutive_months(months: list[str]) -> bool:
    """Whether ``YYYY-MM`` keys are adjacent calendar months, oldest first."""
    indices = [int(m[:4]) * 12 + int(m[5:7]) for m in months]
    return all(later - earlier == 1 for earlier, later in zip(indices, indices[1:]))


def volatility_score(nets: list[Decimal]) -> Decimal:
    """Coefficient of variation of monthly nets.

    Sample standard deviation divided by the mean absolute net. Zero when
    fewer than two months exist or every month nets to zero.
    """
    n = len(nets)
    if n < 2:
        return ZERO

    mean_abs = sum((abs(x) for x in nets), ZERO) / n
    if mean_abs == 0:
        return ZERO

    mean = sum(nets, ZERO) / n
    variance = sum(((x - mean) ** 2 for x in nets), ZERO) / (n - 1)
    score = variance.sqrt() / mean_abs
    return score.quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)


def autocorrelation(nets: list[Decimal], lag: int) -> Decimal:
    """Sample autocorrelation of the series at ``lag``."""
    n = len(nets)
    if lag <= 0 or lag >= n:
        return ZERO
    mean = sum(nets, ZERO) / n
    deviations = [x - mean for x in nets]
    denominator = sum((d * d for d in deviations), ZERO)
    if denominator == 0:
        return ZERO
    numerator = sum((deviations[t] * deviations[t + lag] for t in range(n - lag)), ZERO)
    return numerator / denominator


def direction_change_ratio(nets: list[Decimal]) -> Decimal:
    """Share of consecutive month-over-month moves that reverse direction."""
    diffs = [b - a for a, b in zip(nets, nets[1:]) if b != a]
    if len(diffs) < 2:
        return ZERO
    flips = sum(1 for a, b in zip(diffs, diffs[1:]) if (a > 0) != (b > 0))
    return Decimal(flips) / (len(diffs) - 1)


def _seasonal_label(
    nets: list[Decimal],
    score: Decimal,
    config: ClassifierConfig,
) -> SpendingPattern | None:
    moderate = Decimal(str(config.moderate_threshold))

    if direction_change_ratio(nets) >= Decimal(str(config.erratic_threshold)) and score >= moderate:
        return SpendingPattern.ERRATIC

    # Only lags with at least two full cycles in the data
    lags = [lag for lag in SEASONAL_LAGS if 2 * lag <= len(nets)]
    if lags:
        peak = max(autocorrelation(nets, lag) for lag in lags)
        if peak >= Decimal(str(config.seasonal_threshold)):
            return SpendingPattern.SEASONAL
    return None


def classify(state: AccountAnalytics, config: ClassifierConfig | None = None) -> Classification:
    """Compute volatility score and spending pattern for a folded state.

    Rules are evaluated in order and the first match wins: INACTIVE,
    VOLATILE, the seasonal rule (ERRATIC/SEASONAL, only with enough months),
    INCREASING, DECREASING (last three calendar months, with no gap),
    VARIABLE, STABLE.
    """
    config = config or ClassifierConfig()
    nets = monthly_nets(state, config.volatility_window_months)
    score = volatility_score(nets)

    if state.transaction_count == 0:
        return Classification(score, SpendingPattern.INACTIVE)

    if score >= Decimal(str(config.high_threshold)):
        return Classification(score, SpendingPattern.VOLATILE)

    if config.enable_seasonal and len(nets) >= config.seasonal_min_months:
        label = _seasonal_label(nets, score, config)
        if label is not None:
            return Classification(score, label)

    if len(nets) >= 3 and consecutive_months(state.month_keys()[-3:]):
        a, b, c = nets[-3:]
        if a < b < c:
            return Classification(score, SpendingPattern.INCREASING)
        if a > b > c:
            return Classification(score, SpendingPattern.DECREASING)

    if score >= Decimal(str(config.moderate_threshold)):
        return Classification(score, SpendingPattern.VARIABLE)

    return Classification(score, SpendingPattern.STABLE)
