"""Backtest engine configuration."""

from dataclasses import dataclass
from typing import Optional

from yieldsim.core.domain.trade import Trade
from yieldsim.core.domain.value_objects import Amount
from yieldsim.core.errors import ConfigError


@dataclass(frozen=True)
class CostModel:
    """
    Execution costs added by the engine to trades that carry none.

    fees     = notional * fee_bps / 10_000 + fixed_fee
    slippage = notional * slippage_bps / 10_000
    """

    slippage_bps: float = 0.0
    fee_bps: float = 0.0
    fixed_fee: float = 0.0  # Per trade (e.g. gas), quote currency

    def __post_init__(self):
        for name in ("slippage_bps", "fee_bps", "fixed_fee"):
            if getattr(self, name) < 0:
                raise ConfigError(f"CostModel.{name} must be non-negative, got {getattr(self, name)}")

    def apply(self, trade: Trade) -> Trade:
        """Trade with modelled costs, or the trade itself if it already has costs."""
        if not trade.costs().is_zero():
            return trade
        notional = trade.value().value
        fees = notional * self.fee_bps / 10_000 + self.fixed_fee
        slippage = notional * self.slippage_bps / 10_000
        if fees == 0 and slippage == 0:
            return trade
        return trade.with_costs(Amount.create(fees), Amount.create(slippage))


@dataclass(frozen=True)
class BacktestConfig:
    """
    Engine settings.

    - periods_per_year: annualization of the Sharpe/Sortino ratios (365 for daily ticks)
    - emergency_close_threshold: liquidation proximity that raises RiskLimitBreached
    - allow_negative_cash: if False, a trade leaving cash < 0 aborts the run
    - max_consecutive_data_gaps: consecutive skipped ticks tolerated before DataGapError
    - max_ticks: iteration cap (None = whole stream); hitting it aborts with a partial result
    - risk_free_rate: per-period rate subtracted from returns in Sharpe/Sortino (percent)
    - cost_model: optional execution cost model
    - apply_il: value LP positions net of impermanent loss since entry
    """

    periods_per_year: float = 365.0
    emergency_close_threshold: float = 0.7
    allow_negative_cash: bool = False
    max_consecutive_data_gaps: int = 3
    max_ticks: Optional[int] = None
    risk_free_rate: float = 0.0
    cost_model: Optional[CostModel] = None
    apply_il: bool = False

    def __post_init__(self):
        if self.periods_per_year <= 0:
            raise ConfigError(f"periods_per_year must be positive, got {self.periods_per_year}")
        if not 0.0 <= self.emergency_close_threshold <= 1.0:
            raise ConfigError(
                f"emergency_close_threshold must be in [0, 1], got {self.emergency_close_threshold}"
            )
        if self.max_consecutive_data_gaps < 0:
            raise ConfigError(
                f"max_consecutive_data_gaps must be non-negative, got {self.max_consecutive_data_gaps}"
            )
        if self.max_ticks is not None and self.max_ticks < 0:
            raise ConfigError(f"max_ticks must be non-negative, got {self.max_ticks}")
