"""Strategy contract consumed by the backtest engine."""

from .contract import BaseStrategy, Strategy, StrategyConfig, StrategyResult

__all__ = [
    "BaseStrategy",
    "Strategy",
    "StrategyConfig",
    "StrategyResult",
]
