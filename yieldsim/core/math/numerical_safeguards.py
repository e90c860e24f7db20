"""
Numerical Safeguards — float guards for metrics and risk math

Performance metrics are computed over histories that may contain a zero
starting value or a flat series; these helpers keep such cases from raising
ZeroDivisionError or leaking NaN/Inf into a BacktestResult.
"""

import math
from typing import Final

# =============================================================================
# TOLERANCES
# =============================================================================

# Position quantities at or below this are treated as closed
EPS_QTY: Final[float] = 1e-12

# Default absolute tolerance of is_zero
EPS_ZERO: Final[float] = 1e-12


# =============================================================================
# GUARDS
# =============================================================================


def sanitize_float(value: float, fallback: float = 0.0) -> float:
    """Return value when finite, otherwise fallback."""
    return value if math.isfinite(value) else fallback


def safe_divide(numerator: float, denominator: float, fallback: float = 0.0) -> float:
    """
    numerator / denominator, or `fallback` when the denominator is zero or the
    quotient is not finite.

    Examples:
        >>> safe_divide(10.0, 4.0)
        2.5
        >>> safe_divide(10.0, 0.0, fallback=-1.0)
        -1.0
    """
    denominator = sanitize_float(denominator)
    if denominator == 0.0:
        return fallback
    return sanitize_float(sanitize_float(numerator) / denominator, fallback)


def is_zero(value: float, tol: float = EPS_ZERO) -> bool:
    return abs(value) <= tol


def validate_in_range(
    value: float,
    name: str,
    min_value: float | None = None,
    max_value: float | None = None,
) -> None:
    """
    Check a configuration scalar.

    Args:
        value: Value to check
        name: Name used in the error message
        min_value: Inclusive lower bound (None = unbounded)
        max_value: Inclusive upper bound (None = unbounded)

    Raises:
        ValueError: If value is NaN/Inf or outside [min_value, max_value]
    """
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value}")

    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value}, got {value}")

    if max_value is not None and value > max_value:
        raise ValueError(f"{name} must be <= {max_value}, got {value}")
