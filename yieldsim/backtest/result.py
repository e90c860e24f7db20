"""
Backtest Result — engine output

Immutable Pydantic models. Field semantics are stable regardless of how the
result is serialized downstream; `to_contract_dict()` yields the JSON-mode
dict that the BacktestResult contract validates.

historical_values and historical_returns are parallel sequences with one entry
per processed tick (skipped data-gap ticks included, carried forward).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from yieldsim.core.domain.position import Position
from yieldsim.core.domain.trade import Trade


# =============================================================================
# ENGINE STATE
# =============================================================================


class EngineState(str, Enum):
    """Backtest engine lifecycle state"""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


# =============================================================================
# METRICS
# =============================================================================


class PerformanceMetrics(BaseModel):
    """
    Aggregate performance over the processed history.

    Percent-valued: total_return, max_drawdown, current_drawdown, value_at_risk_95.
    """

    total_return: float = Field(..., allow_inf_nan=False, description="(last - first) / first * 100")
    sharpe_ratio: float = Field(..., allow_inf_nan=False, description="Annualized Sharpe ratio")
    max_drawdown: float = Field(..., ge=0, allow_inf_nan=False, description="Max drawdown (%)")
    final_value: float = Field(..., allow_inf_nan=False, description="Last portfolio value")

    sortino_ratio: float = Field(default=0.0, allow_inf_nan=False, description="Annualized Sortino")
    current_drawdown: float = Field(default=0.0, ge=0, allow_inf_nan=False, description="Drawdown at end (%)")
    value_at_risk_95: float = Field(default=0.0, ge=0, allow_inf_nan=False, description="Historical VaR 95% (%)")

    trade_count: int = Field(default=0, ge=0)
    rebalance_count: int = Field(default=0, ge=0)
    risk_breach_count: int = Field(default=0, ge=0)

    # Final portfolio state
    total_exposure: float = Field(default=0.0, ge=0, allow_inf_nan=False, description="Gross position value")
    leverage: float = Field(default=0.0, ge=0, allow_inf_nan=False, description="Gross exposure / total value")
    health_factor: Optional[float] = Field(
        None, ge=0, allow_inf_nan=False, description="Collateral / borrowed (None when nothing is borrowed)"
    )

    model_config = {"frozen": True}

    @classmethod
    def empty(cls, final_value: float = 0.0) -> "PerformanceMetrics":
        return cls(total_return=0.0, sharpe_ratio=0.0, max_drawdown=0.0, final_value=final_value)


# =============================================================================
# RESULT
# =============================================================================


class BacktestResult(BaseModel):
    """
    Outcome of one backtest run (complete or partial).

    Immutable model (frozen=True).
    """

    status: EngineState = Field(..., description="COMPLETED or ABORTED")
    metrics: PerformanceMetrics

    trades: tuple[Trade, ...] = Field(default=(), description="Applied trades, in order")
    positions: tuple[Position, ...] = Field(default=(), description="Final positions snapshot")

    initial_value: float = Field(..., allow_inf_nan=False, description="Seed portfolio value")
    historical_values: tuple[float, ...] = Field(default=(), description="Value after each tick")
    historical_returns: tuple[float, ...] = Field(default=(), description="Tick-over-tick change (%)")

    processed_ticks: int = Field(default=0, ge=0, description="Ticks fully processed")
    last_completed_tick: Optional[int] = Field(None, ge=0, description="Index of the last completed tick")
    abort_reason: Optional[str] = Field(None, description="Why the run aborted (None if completed)")
    data_gaps: tuple[int, ...] = Field(default=(), description="Indices of skipped ticks")
    expected_yields: dict[str, float] = Field(
        default_factory=dict, description="Strategy id → expected APR (%) at the first tick"
    )

    model_config = {"frozen": True}

    @property
    def is_complete(self) -> bool:
        return self.status == EngineState.COMPLETED

    @property
    def final_value(self) -> float:
        return self.metrics.final_value

    def to_contract_dict(self) -> dict[str, Any]:
        """JSON-mode dict (value objects as numbers, datetimes as ISO strings)."""
        return self.model_dump(mode="json")
