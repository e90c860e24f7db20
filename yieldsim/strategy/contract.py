"""
Strategy Contract

The engine depends on this capability set only; concrete strategies are
supplied by callers.

- execute(portfolio, market_data, config) -> StrategyResult
    The only state-changing entry point. Returns trades/position updates; the
    engine applies them. May be a coroutine function: the engine awaits it fully
    before applying anything.
- calculate_expected_yield(config, market_data) -> APR
    Pure projection, no side effects.
- validate_config(config) -> bool
    Pure predicate, called by the engine before the first tick.

Optional attribute `required_fields`: market-data field names the strategy
needs on every tick (see MarketData.has_field). Ticks missing one of them are
treated as data gaps.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Mapping, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, Field

from yieldsim.core.domain.ids import IdGenerator, SequentialIdGenerator
from yieldsim.core.domain.market_data import MarketData
from yieldsim.core.domain.portfolio import Portfolio
from yieldsim.core.domain.position import Position
from yieldsim.core.domain.trade import Trade, TradeSide
from yieldsim.core.domain.value_objects import APR, Amount, Price


StrategyConfig = Mapping[str, Any]


# =============================================================================
# RESULT
# =============================================================================


class StrategyResult(BaseModel):
    """
    Outcome of one strategy execution.

    Immutable model (frozen=True).
    """

    trades: tuple[Trade, ...] = Field(default=(), description="Trades to apply, in order")
    positions: tuple[Position, ...] = Field(
        default=(), description="Position states to upsert after trades are applied"
    )
    should_rebalance: bool = Field(default=False, description="Rebalance signalled")
    rebalance_reason: Optional[str] = Field(None, description="Why the rebalance was signalled")

    model_config = {"frozen": True}

    @classmethod
    def empty(cls) -> "StrategyResult":
        return cls()


# =============================================================================
# CONTRACT
# =============================================================================


@runtime_checkable
class Strategy(Protocol):
    """Capability set every strategy implements."""

    id: str
    name: str

    def execute(
        self,
        portfolio: Portfolio,
        market_data: MarketData,
        config: StrategyConfig,
    ) -> Union[StrategyResult, Awaitable[StrategyResult]]:
        ...

    def calculate_expected_yield(self, config: StrategyConfig, market_data: MarketData) -> APR:
        ...

    def validate_config(self, config: StrategyConfig) -> bool:
        ...


class BaseStrategy(ABC):
    """
    Convenience base for strategy implementations.

    Trade ids come from an injectable id source so backtests stay reproducible.
    """

    required_fields: tuple[str, ...] = ()

    def __init__(
        self,
        strategy_id: str,
        name: str,
        id_generator: Optional[IdGenerator] = None,
    ):
        self.id = strategy_id
        self.name = name
        self.id_generator = id_generator or SequentialIdGenerator()

    @abstractmethod
    def execute(
        self,
        portfolio: Portfolio,
        market_data: MarketData,
        config: StrategyConfig,
    ) -> Union[StrategyResult, Awaitable[StrategyResult]]:
        ...

    @abstractmethod
    def calculate_expected_yield(self, config: StrategyConfig, market_data: MarketData) -> APR:
        ...

    @abstractmethod
    def validate_config(self, config: StrategyConfig) -> bool:
        ...

    def create_trade(
        self,
        asset: str,
        side: TradeSide,
        amount: Amount,
        price: Price,
        timestamp: datetime,
        fees: Optional[Amount] = None,
        slippage: Optional[Amount] = None,
    ) -> Trade:
        return Trade(
            id=self.id_generator.next_id(f"{self.id}-trade"),
            strategy_id=self.id,
            asset=asset,
            side=side,
            amount=amount,
            price=price,
            timestamp=timestamp,
            fees=fees or Amount.zero(),
            slippage=slippage or Amount.zero(),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, name={self.name!r})"
