"""
Domain models and value objects.

Contains the value objects (Price, Amount, APR, IV, PnL, FundingRate) and the
entities built from them: Trade, Position, Portfolio, MarketData, LiquidationRisk.
"""

from yieldsim.core.domain.value_objects import (
    APR,
    IV,
    IV_MAX,
    IV_MIN,
    Amount,
    FundingRate,
    IVRegime,
    PnL,
    Price,
    ScalarValue,
)
from yieldsim.core.domain.ids import IdGenerator, SequentialIdGenerator, UuidIdGenerator
from yieldsim.core.domain.trade import Trade, TradeSide
from yieldsim.core.domain.position import Position, PositionKind, PositionSide
from yieldsim.core.domain.portfolio import Portfolio
from yieldsim.core.domain.market_data import MarketData
from yieldsim.core.domain.liquidation_risk import (
    LiquidationRisk,
    RiskLevel,
    distance_to_liquidation,
    risk_level_for,
)

__all__ = [
    # Value objects
    "ScalarValue",
    "Price",
    "Amount",
    "APR",
    "IV",
    "IVRegime",
    "IV_MIN",
    "IV_MAX",
    "PnL",
    "FundingRate",
    # Ids
    "IdGenerator",
    "SequentialIdGenerator",
    "UuidIdGenerator",
    # Trade model
    "Trade",
    "TradeSide",
    # Position model
    "Position",
    "PositionKind",
    "PositionSide",
    # Portfolio aggregate
    "Portfolio",
    # Market data
    "MarketData",
    # Liquidation risk
    "LiquidationRisk",
    "RiskLevel",
    "distance_to_liquidation",
    "risk_level_for",
]
