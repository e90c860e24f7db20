"""Risk calculators derived from portfolio state."""

from .health import (
    portfolio_health_factor,
    portfolio_leverage,
    position_health_factor,
    total_exposure,
)
from .liquidation import LiquidationRiskCalculator

__all__ = [
    "LiquidationRiskCalculator",
    "portfolio_health_factor",
    "portfolio_leverage",
    "position_health_factor",
    "total_exposure",
]
