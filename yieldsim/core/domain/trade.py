"""
Trade — executed transaction record

Immutable Pydantic model. A Trade is produced by a strategy's execution result
(or by the engine when it applies a cost model) and is never mutated afterwards.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .value_objects import Amount, Price


# =============================================================================
# ENUMS
# =============================================================================


class TradeSide(str, Enum):
    """Trade side"""

    BUY = "buy"
    SELL = "sell"


# =============================================================================
# TRADE MODEL
# =============================================================================


class Trade(BaseModel):
    """
    Executed trade.

    Derived values:
    - value      = amount * price
    - total_cost = value + fees + slippage

    Immutable model (frozen=True).
    """

    # Identification
    id: str = Field(..., min_length=1, description="Unique trade id")
    strategy_id: str = Field(..., min_length=1, description="Strategy that produced the trade")
    asset: str = Field(..., min_length=1, description="Traded asset (e.g. 'ETH')")
    side: TradeSide = Field(..., description="buy / sell")

    # Execution
    amount: Amount = Field(..., description="Quantity traded (always positive)")
    price: Price = Field(..., description="Execution price")
    timestamp: datetime = Field(..., description="Execution time")

    # Costs
    fees: Amount = Field(default_factory=Amount.zero, description="Fees paid")
    slippage: Amount = Field(default_factory=Amount.zero, description="Slippage cost")

    model_config = {"frozen": True}  # Immutable

    @field_validator("amount")
    @classmethod
    def validate_amount_positive(cls, v: Amount) -> Amount:
        """Direction lives in `side`, the quantity itself is positive."""
        if v.value <= 0:
            raise ValueError(f"amount {v.value} must be positive")
        return v

    @field_validator("fees", "slippage")
    @classmethod
    def validate_costs_non_negative(cls, v: Amount) -> Amount:
        if v.value < 0:
            raise ValueError(f"cost {v.value} must be non-negative")
        return v

    def value(self) -> Amount:
        """Notional value: amount * price."""
        return self.amount.multiply(self.price.value)

    def total_cost(self) -> Amount:
        """Notional value plus fees and slippage."""
        return self.value().add(self.fees).add(self.slippage)

    def costs(self) -> Amount:
        """Fees plus slippage."""
        return self.fees.add(self.slippage)

    def cash_delta(self) -> Amount:
        """
        Change of cash balance when this trade is applied.

        Returns:
            -total_cost for a buy, value - fees - slippage for a sell
        """
        if self.is_buy():
            return self.total_cost().negate()
        return self.value().subtract(self.costs())

    def signed_amount(self) -> float:
        """Quantity with direction: positive for buys, negative for sells."""
        if self.is_buy():
            return self.amount.value
        return -self.amount.value

    def is_buy(self) -> bool:
        return self.side == TradeSide.BUY

    def with_costs(self, fees: Amount, slippage: Amount) -> "Trade":
        """New trade with the given costs (the original is left untouched)."""
        return Trade(
            id=self.id,
            strategy_id=self.strategy_id,
            asset=self.asset,
            side=self.side,
            amount=self.amount,
            price=self.price,
            timestamp=self.timestamp,
            fees=fees,
            slippage=slippage,
        )
