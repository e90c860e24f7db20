"""
Backtest engine

Replays a MarketData series against strategies, applies their results to a
portfolio and reports performance metrics.
"""

from yieldsim.backtest.config import BacktestConfig, CostModel
from yieldsim.backtest.engine import (
    LIQUIDATION_PROXIMITY_LIMIT,
    BacktestEngine,
    StopSignal,
    StrategyBinding,
    position_id_for,
)
from yieldsim.backtest.metrics import (
    calculate_current_drawdown,
    calculate_max_drawdown,
    calculate_sharpe_ratio,
    calculate_sortino_ratio,
    calculate_total_return,
    calculate_value_at_risk,
    drawdown_series,
    percentage_change,
)
from yieldsim.backtest.result import BacktestResult, EngineState, PerformanceMetrics

__all__ = [
    # Config
    "BacktestConfig",
    "CostModel",
    # Engine
    "BacktestEngine",
    "EngineState",
    "StopSignal",
    "StrategyBinding",
    "LIQUIDATION_PROXIMITY_LIMIT",
    "position_id_for",
    # Result
    "BacktestResult",
    "PerformanceMetrics",
    # Metrics
    "percentage_change",
    "calculate_total_return",
    "calculate_sharpe_ratio",
    "calculate_sortino_ratio",
    "drawdown_series",
    "calculate_max_drawdown",
    "calculate_current_drawdown",
    "calculate_value_at_risk",
]
