"""
Core math modules

Numerical safeguards, volatility estimators and impermanent-loss helpers.
All functions are pure and deterministic.
"""

# Numerical safeguards
from yieldsim.core.math.numerical_safeguards import (
    EPS_QTY,
    EPS_ZERO,
    is_zero,
    safe_divide,
    sanitize_float,
    validate_in_range,
)

# Impermanent loss
from yieldsim.core.math.impermanent_loss import ImpermanentLossCalculator

# Volatility estimators
from yieldsim.core.math.volatility import (
    DEFAULT_ANNUALIZATION_FACTOR,
    DEFAULT_EWMA_LAMBDA,
    DEFAULT_WINDOW_DAYS,
    IVPoint,
    OHLCPoint,
    PricePoint,
    VolatilityEstimator,
    calculate_ewma_iv,
    calculate_garman_klass_iv,
    calculate_historical_volatility,
    calculate_parkinson_iv,
    calculate_rolling_iv,
    estimate_iv_series,
    log_returns,
)

__all__ = [
    # Numerical safeguards
    "EPS_QTY",
    "EPS_ZERO",
    "is_zero",
    "safe_divide",
    "sanitize_float",
    "validate_in_range",
    # Impermanent loss
    "ImpermanentLossCalculator",
    # Volatility: Constants
    "DEFAULT_ANNUALIZATION_FACTOR",
    "DEFAULT_EWMA_LAMBDA",
    "DEFAULT_WINDOW_DAYS",
    # Volatility: Types
    "IVPoint",
    "OHLCPoint",
    "PricePoint",
    "VolatilityEstimator",
    # Volatility: Functions
    "calculate_ewma_iv",
    "calculate_garman_klass_iv",
    "calculate_historical_volatility",
    "calculate_parkinson_iv",
    "calculate_rolling_iv",
    "estimate_iv_series",
    "log_returns",
]
