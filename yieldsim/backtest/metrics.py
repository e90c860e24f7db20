"""
Performance metrics over a backtest's history

Inputs are the engine's parallel history buffers:
- historical_values:  portfolio total value after each tick
- historical_returns: tick-over-tick change of that value, in percent

Definitions:
- total_return = (last - first) / first * 100
- sharpe       = mean(excess) / pstdev(returns) * sqrt(periods_per_year); 0 when pstdev == 0
- max_drawdown = max_j (peak_j - value_j) / peak_j * 100, peak_j = running max up to j
- sortino      = mean(excess) / downside deviation * sqrt(periods_per_year); 0 without losses
- VaR          = |return at the (1 - confidence) quantile|, same unit as returns

All functions are pure; degenerate inputs (empty series, zero variance,
non-positive peaks) return 0.0 instead of raising.
"""

import math
import statistics
from typing import Final, Sequence

from yieldsim.core.math.numerical_safeguards import safe_divide, sanitize_float


DEFAULT_VAR_CONFIDENCE: Final[float] = 0.95


def percentage_change(previous: float, current: float) -> float:
    """(current - previous) / previous * 100, 0.0 if previous is 0."""
    return safe_divide(current - previous, previous) * 100


def calculate_total_return(historical_values: Sequence[float]) -> float:
    if not historical_values:
        return 0.0
    return percentage_change(historical_values[0], historical_values[-1])


def calculate_sharpe_ratio(
    historical_returns: Sequence[float],
    periods_per_year: float,
    risk_free_rate: float = 0.0,
) -> float:
    """
    Annualized Sharpe ratio using the population standard deviation.

    Args:
        historical_returns: Per-period returns
        periods_per_year: Annualization factor (e.g. 252, 365)
        risk_free_rate: Per-period risk-free return, same unit as returns

    Returns:
        Sharpe ratio; 0.0 for an empty series or zero standard deviation
    """
    if not historical_returns:
        return 0.0

    mean_return = statistics.fmean(historical_returns)
    std_dev = statistics.pstdev(historical_returns)
    if std_dev == 0:
        return 0.0

    sharpe = (mean_return - risk_free_rate) / std_dev * math.sqrt(periods_per_year)
    return sanitize_float(sharpe)


def calculate_sortino_ratio(
    historical_returns: Sequence[float],
    periods_per_year: float,
    risk_free_rate: float = 0.0,
) -> float:
    """
    Annualized Sortino ratio.

    Downside deviation = sqrt(sum((r - mean)^2 for r < 0) / n).

    Returns:
        0.0 when there are no negative returns (the ratio is unbounded) or the
        downside deviation is 0
    """
    if not historical_returns:
        return 0.0

    mean_return = statistics.fmean(historical_returns)
    negative = [r for r in historical_returns if r < 0]
    if not negative:
        return 0.0

    downside_variance = sum((r - mean_return) ** 2 for r in negative) / len(historical_returns)
    downside_dev = math.sqrt(downside_variance)
    if downside_dev == 0:
        return 0.0

    sortino = (mean_return - risk_free_rate) / downside_dev * math.sqrt(periods_per_year)
    return sanitize_float(sortino)


def drawdown_series(historical_values: Sequence[float]) -> list[float]:
    """
    Drawdown (percent) at each point against the running peak.

    Points whose running peak is non-positive have drawdown 0.
    """
    drawdowns: list[float] = []
    peak = -math.inf

    for value in historical_values:
        peak = max(peak, value)
        if peak > 0:
            drawdowns.append((peak - value) / peak * 100)
        else:
            drawdowns.append(0.0)

    return drawdowns


def calculate_max_drawdown(historical_values: Sequence[float]) -> float:
    """
    Largest peak-to-trough decline, in percent.

    Example:
        [100, 120, 90, 110] → peaks [100, 120, 120, 120] → drawdowns
        [0, 0, 25, 8.33] → 25.0
    """
    return max(drawdown_series(historical_values), default=0.0)


def calculate_current_drawdown(historical_values: Sequence[float]) -> float:
    """Decline of the last value from the all-time peak, in percent."""
    if not historical_values:
        return 0.0
    peak = max(historical_values)
    if peak <= 0:
        return 0.0
    return (peak - historical_values[-1]) / peak * 100


def calculate_value_at_risk(
    historical_returns: Sequence[float],
    confidence_level: float = DEFAULT_VAR_CONFIDENCE,
) -> float:
    """
    Historical VaR: magnitude of the return at the (1 - confidence) quantile.

    Raises:
        ValueError: If confidence_level is outside (0, 1)
    """
    if not 0 < confidence_level < 1:
        raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
    if not historical_returns:
        return 0.0

    ordered = sorted(historical_returns)
    index = math.floor((1 - confidence_level) * len(ordered))
    return abs(ordered[min(index, len(ordered) - 1)])
