"""
Volatility Estimators — price series → annualized volatility (percent)

Historical volatility is used as the IV proxy when the market data carries no
implied volatility. All estimators are pure functions: no shared state between
calls, identical output for identical input.

Estimators:
- Historical (close-to-close): sample stdev of log returns
- Rolling historical: sliding window over the series
- EWMA: var_t = λ·var_{t-1} + (1-λ)·r_t², seeded at 0
- Parkinson: ln(H/L)² / (4·ln 2)
- Garman-Klass: 0.5·ln(H/L)² − (2·ln 2 − 1)·ln(C/O)², clamped at 0

Annualization: σ_annual = σ_period · sqrt(annualization_factor)
(365 for daily crypto data, 252 for trading days).
"""

import math
import statistics
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Final, Sequence

from yieldsim.core.domain.value_objects import IV


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_ANNUALIZATION_FACTOR: Final[float] = 365.0
DEFAULT_WINDOW_DAYS: Final[int] = 30
DEFAULT_EWMA_LAMBDA: Final[float] = 0.94  # RiskMetrics decay

LN2: Final[float] = math.log(2)
GARMAN_KLASS_CO_COEF: Final[float] = 2 * LN2 - 1


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class PricePoint:
    """Close price at a timestamp."""

    timestamp: datetime
    close: float


@dataclass(frozen=True)
class OHLCPoint:
    """OHLC bar."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class IVPoint:
    """Annualized volatility (percent) at a timestamp."""

    timestamp: datetime
    iv: float

    def to_iv(self) -> IV:
        """
        As an IV value object.

        Raises:
            ValueObjectError: If iv exceeds the IV range (extreme series)
        """
        return IV.create(self.iv)


class VolatilityEstimator(str, Enum):
    """Available estimators"""

    HISTORICAL = "historical"
    EWMA = "ewma"
    PARKINSON = "parkinson"
    GARMAN_KLASS = "garman_klass"


# =============================================================================
# HELPERS
# =============================================================================


def _validate_factor(annualization_factor: float) -> None:
    if annualization_factor <= 0:
        raise ValueError(f"annualization_factor must be positive, got {annualization_factor}")


def log_returns(prices: Sequence[float]) -> list[float]:
    """
    Log returns ln(p_i / p_{i-1}).

    Pairs with a non-positive price are skipped.
    """
    returns: list[float] = []
    for prev, curr in zip(prices[:-1], prices[1:]):
        if prev > 0 and curr > 0:
            returns.append(math.log(curr / prev))
    return returns


def _annualize(variance: float, annualization_factor: float) -> float:
    return math.sqrt(max(0.0, variance) * annualization_factor) * 100


# =============================================================================
# CLOSE-TO-CLOSE
# =============================================================================


def calculate_historical_volatility(
    prices: Sequence[float],
    annualization_factor: float = DEFAULT_ANNUALIZATION_FACTOR,
) -> float:
    """
    Annualized historical volatility of a close series.

    Args:
        prices: Close prices, oldest first
        annualization_factor: Periods per year

    Returns:
        Volatility in percent; 0.0 when fewer than 2 prices (or fewer than 2
        usable returns, since the sample stdev needs n >= 2)
    """
    _validate_factor(annualization_factor)
    if len(prices) < 2:
        return 0.0

    returns = log_returns(prices)
    if len(returns) < 2:
        return 0.0

    std_dev = statistics.stdev(returns)
    return std_dev * math.sqrt(annualization_factor) * 100


def calculate_rolling_iv(
    points: Sequence[PricePoint],
    window_days: int = DEFAULT_WINDOW_DAYS,
    annualization_factor: float = DEFAULT_ANNUALIZATION_FACTOR,
) -> list[IVPoint]:
    """
    Rolling historical volatility, one output per input point.

    For i >= window_days the value is the HV of points[i - window_days:i]. The
    first window_days points are back-filled with the first computed value
    (early values are not yet informative). With fewer than window_days + 1
    points the HV of the whole series is used for every point.
    """
    if window_days < 2:
        raise ValueError(f"window_days must be >= 2, got {window_days}")
    _validate_factor(annualization_factor)

    closes = [p.close for p in points]

    if len(points) < window_days + 1:
        iv = calculate_historical_volatility(closes, annualization_factor)
        return [IVPoint(p.timestamp, iv) for p in points]

    computed = [
        IVPoint(
            points[i].timestamp,
            calculate_historical_volatility(closes[i - window_days : i], annualization_factor),
        )
        for i in range(window_days, len(points))
    ]

    first_iv = computed[0].iv
    backfill = [IVPoint(points[i].timestamp, first_iv) for i in range(window_days)]
    return backfill + computed


def calculate_ewma_iv(
    points: Sequence[PricePoint],
    lam: float = DEFAULT_EWMA_LAMBDA,
    annualization_factor: float = DEFAULT_ANNUALIZATION_FACTOR,
) -> list[IVPoint]:
    """
    EWMA volatility: var = λ·var_prev + (1-λ)·r², seeded at 0.

    One output per input point. The leading point is back-filled with the
    second point's value; a pair with a non-positive close leaves the variance
    unchanged, so that point repeats the previous value.
    """
    if not 0 < lam < 1:
        raise ValueError(f"lam must be in (0, 1), got {lam}")
    _validate_factor(annualization_factor)

    if len(points) < 2:
        return [IVPoint(p.timestamp, 0.0) for p in points]

    ivs: list[IVPoint] = []
    variance = 0.0

    for prev, curr in zip(points[:-1], points[1:]):
        if prev.close > 0 and curr.close > 0:
            r = math.log(curr.close / prev.close)
            variance = lam * variance + (1 - lam) * r * r
        ivs.append(IVPoint(curr.timestamp, _annualize(variance, annualization_factor)))

    ivs.insert(0, IVPoint(points[0].timestamp, ivs[0].iv))

    return ivs


# =============================================================================
# RANGE-BASED
# =============================================================================


def calculate_parkinson_iv(
    points: Sequence[OHLCPoint],
    annualization_factor: float = DEFAULT_ANNUALIZATION_FACTOR,
) -> list[IVPoint]:
    """
    Parkinson estimator per bar: variance = ln(H/L)² / (4·ln 2).

    Bars with low <= 0 are skipped.
    """
    _validate_factor(annualization_factor)
    ivs: list[IVPoint] = []

    for bar in points:
        if bar.low > 0:
            hl = math.log(bar.high / bar.low)
            variance = hl * hl / (4 * LN2)
            ivs.append(IVPoint(bar.timestamp, _annualize(variance, annualization_factor)))

    return ivs


def calculate_garman_klass_iv(
    points: Sequence[OHLCPoint],
    annualization_factor: float = DEFAULT_ANNUALIZATION_FACTOR,
) -> list[IVPoint]:
    """
    Garman-Klass estimator per bar:
    variance = 0.5·ln(H/L)² − (2·ln 2 − 1)·ln(C/O)², clamped at 0.

    Bars with low <= 0 or open <= 0 are skipped.
    """
    _validate_factor(annualization_factor)
    ivs: list[IVPoint] = []

    for bar in points:
        if bar.low > 0 and bar.open > 0:
            hl = math.log(bar.high / bar.low)
            co = math.log(bar.close / bar.open)
            variance = 0.5 * hl * hl - GARMAN_KLASS_CO_COEF * co * co
            ivs.append(IVPoint(bar.timestamp, _annualize(variance, annualization_factor)))

    return ivs


# =============================================================================
# DISPATCH
# =============================================================================


def estimate_iv_series(
    method: VolatilityEstimator,
    points: Sequence[PricePoint] | Sequence[OHLCPoint],
    **kwargs,
) -> list[IVPoint]:
    """
    Run the chosen estimator.

    HISTORICAL maps to the rolling estimator (one value per point). Close-based
    estimators accept OHLC bars and use their close.
    """
    if method in (VolatilityEstimator.PARKINSON, VolatilityEstimator.GARMAN_KLASS):
        if any(not isinstance(p, OHLCPoint) for p in points):
            raise TypeError(f"{method.value} estimator requires OHLCPoint inputs")
        if method == VolatilityEstimator.PARKINSON:
            return calculate_parkinson_iv(points, **kwargs)  # type: ignore[arg-type]
        return calculate_garman_klass_iv(points, **kwargs)  # type: ignore[arg-type]

    closes = [p if isinstance(p, PricePoint) else PricePoint(p.timestamp, p.close) for p in points]
    if method == VolatilityEstimator.EWMA:
        return calculate_ewma_iv(closes, **kwargs)
    return calculate_rolling_iv(closes, **kwargs)
