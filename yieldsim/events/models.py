"""
Domain Events

Immutable Pydantic models raised by the backtest engine:
- TradeExecuted        — a strategy trade was applied to the portfolio
- RebalanceTriggered   — a strategy signalled a rebalance
- RiskLimitBreached    — a risk metric crossed its threshold

Events are created the moment the condition is detected, delivered to
observers, then discarded (the core does not persist them).
"""

from datetime import datetime, timezone
from typing import Callable, Literal, Optional

from pydantic import BaseModel, Field

from yieldsim.core.domain.ids import IdGenerator, SequentialIdGenerator
from yieldsim.core.domain.trade import Trade


# =============================================================================
# EVENT MODELS
# =============================================================================


class DomainEvent(BaseModel):
    """
    Base domain event.

    Immutable model (frozen=True).
    """

    event_id: str = Field(..., min_length=1, description="Unique event id")
    occurred_on: datetime = Field(..., description="Creation time (simulation time in backtests)")
    event_type: str = Field(..., min_length=1, description="Discriminant")

    model_config = {"frozen": True}


class TradeExecuted(DomainEvent):
    event_type: Literal["TradeExecuted"] = "TradeExecuted"
    trade: Trade


class RebalanceTriggered(DomainEvent):
    event_type: Literal["RebalanceTriggered"] = "RebalanceTriggered"
    strategy_id: str = Field(..., min_length=1)
    reason: str = Field(default="")


class RiskLimitBreached(DomainEvent):
    event_type: Literal["RiskLimitBreached"] = "RiskLimitBreached"
    strategy_id: str = Field(..., min_length=1)
    limit_type: str = Field(..., min_length=1, description="e.g. 'liquidation_proximity'")
    current_value: float = Field(..., allow_inf_nan=False)
    threshold: float = Field(..., allow_inf_nan=False)
    position_id: Optional[str] = Field(None, description="Position that breached, if any")


# =============================================================================
# FACTORY
# =============================================================================


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventFactory:
    """
    Creates events with ids from an injectable id source.

    The default SequentialIdGenerator keeps event ids reproducible across runs.
    """

    def __init__(
        self,
        id_generator: Optional[IdGenerator] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.id_generator = id_generator or SequentialIdGenerator()
        self.clock = clock

    def _meta(self, event_type: str, occurred_on: Optional[datetime]) -> dict:
        return {
            "event_id": self.id_generator.next_id(event_type),
            "occurred_on": occurred_on or self.clock(),
        }

    def trade_executed(self, trade: Trade, occurred_on: Optional[datetime] = None) -> TradeExecuted:
        return TradeExecuted(trade=trade, **self._meta("TradeExecuted", occurred_on))

    def rebalance_triggered(
        self,
        strategy_id: str,
        reason: Optional[str],
        occurred_on: Optional[datetime] = None,
    ) -> RebalanceTriggered:
        return RebalanceTriggered(
            strategy_id=strategy_id,
            reason=reason or "",
            **self._meta("RebalanceTriggered", occurred_on),
        )

    def risk_limit_breached(
        self,
        strategy_id: str,
        limit_type: str,
        current_value: float,
        threshold: float,
        position_id: Optional[str] = None,
        occurred_on: Optional[datetime] = None,
    ) -> RiskLimitBreached:
        return RiskLimitBreached(
            strategy_id=strategy_id,
            limit_type=limit_type,
            current_value=current_value,
            threshold=threshold,
            position_id=position_id,
            **self._meta("RiskLimitBreached", occurred_on),
        )
