"""
Liquidation Risk Calculator

Builds LiquidationRisk snapshots from positions and current marks. Invoked once
per position per tick by the backtest engine. Purely computational: positions
are read, never modified.

A position without a liquidation price (spot holdings, or perps whose venue did
not report one) gets the safe placeholder (proximity = 0).
"""

from datetime import datetime
from typing import Callable, Optional

from yieldsim.core.domain.liquidation_risk import (
    DEFAULT_EMERGENCY_CLOSE_THRESHOLD,
    LiquidationRisk,
)
from yieldsim.core.domain.portfolio import Portfolio
from yieldsim.core.domain.position import Position
from yieldsim.core.domain.value_objects import Price
from yieldsim.core.math.numerical_safeguards import validate_in_range


class LiquidationRiskCalculator:
    """Derives liquidation risk for positions."""

    def __init__(self, emergency_close_threshold: float = DEFAULT_EMERGENCY_CLOSE_THRESHOLD):
        """
        Args:
            emergency_close_threshold: Proximity at which a position is flagged
                for emergency close (default 0.7)
        """
        validate_in_range(emergency_close_threshold, "emergency_close_threshold", 0.0, 1.0)
        self.emergency_close_threshold = emergency_close_threshold

    def assess(
        self,
        position: Position,
        mark_price: Price,
        timestamp: Optional[datetime] = None,
    ) -> LiquidationRisk:
        """
        Risk snapshot of one position at `mark_price`.

        Args:
            position: Position to assess
            mark_price: Current mark of the position's asset
            timestamp: Snapshot time (tick time in a backtest)

        Returns:
            LiquidationRisk (placeholder if the position has no liquidation price)
        """
        if position.liquidation_price is None:
            return LiquidationRisk.safe(
                symbol=position.asset,
                exchange=position.exchange,
                side=position.side,
                timestamp=timestamp,
            )

        size = abs(position.amount.value)
        return LiquidationRisk.create(
            symbol=position.asset,
            exchange=position.exchange,
            side=position.side,
            mark_price=mark_price.value,
            liquidation_price=position.liquidation_price,
            entry_price=position.entry_price.value,
            position_size=size,
            position_value_usd=size * mark_price.value,
            margin=position.margin(),
            leverage=position.leverage,
            timestamp=timestamp,
        )

    def assess_portfolio(
        self,
        portfolio: Portfolio,
        price_lookup: Callable[[str], Price],
        timestamp: Optional[datetime] = None,
    ) -> dict[str, LiquidationRisk]:
        """
        One snapshot per open position, keyed by position id (portfolio order).
        """
        return {
            position.id: self.assess(position, price_lookup(position.asset), timestamp)
            for position in portfolio.positions
        }

    def should_emergency_close(self, risk: LiquidationRisk) -> bool:
        return risk.should_emergency_close(self.emergency_close_threshold)
