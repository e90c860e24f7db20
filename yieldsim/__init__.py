"""
yieldsim — deterministic backtesting and portfolio-risk simulation core

Replays time-ordered market data against pluggable strategies, keeps a
portfolio of positions and cash, derives liquidation and volatility risk at
each step and publishes domain events.
"""

from yieldsim.backtest import BacktestConfig, BacktestEngine, BacktestResult, CostModel, EngineState
from yieldsim.core.domain import (
    APR,
    IV,
    Amount,
    FundingRate,
    MarketData,
    PnL,
    Portfolio,
    Position,
    Price,
    Trade,
    TradeSide,
)
from yieldsim.core.errors import (
    ConfigError,
    DataGapError,
    SimulationError,
    ValueObjectError,
    YieldSimError,
)
from yieldsim.events import DomainEventBus
from yieldsim.strategy import BaseStrategy, Strategy, StrategyResult

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Engine
    "BacktestEngine",
    "BacktestConfig",
    "BacktestResult",
    "CostModel",
    "EngineState",
    # Domain
    "Price",
    "Amount",
    "APR",
    "IV",
    "PnL",
    "FundingRate",
    "Trade",
    "TradeSide",
    "Position",
    "Portfolio",
    "MarketData",
    # Strategy contract
    "Strategy",
    "BaseStrategy",
    "StrategyResult",
    # Events
    "DomainEventBus",
    # Errors
    "YieldSimError",
    "ValueObjectError",
    "ConfigError",
    "SimulationError",
    "DataGapError",
]
