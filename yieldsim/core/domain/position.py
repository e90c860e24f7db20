"""
Position — a strategy's open holding

Immutable Pydantic model owned by exactly one Portfolio. The position never
references its portfolio; ownership is answered by the portfolio's id map.

Direction is carried by the sign of `amount`: positive = LONG, negative = SHORT.
Price updates (mark-to-market) produce a new instance via `update_price`.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .value_objects import Amount, PnL, Price


# =============================================================================
# ENUMS
# =============================================================================


class PositionSide(str, Enum):
    """Position direction"""

    LONG = "LONG"
    SHORT = "SHORT"


class PositionKind(str, Enum):
    """Instrument family of the holding"""

    SPOT = "spot"
    LP = "lp"  # Liquidity-provider position
    PERP = "perp"  # Perpetual future


# =============================================================================
# POSITION MODEL
# =============================================================================


class Position(BaseModel):
    """
    Open position.

    Immutable model (frozen=True). All changes create a new instance.
    """

    # Identification
    id: str = Field(..., min_length=1, description="Position id, unique within a portfolio")
    strategy_id: str = Field(..., min_length=1, description="Owning strategy")
    asset: str = Field(..., min_length=1, description="Held asset")
    kind: PositionKind = Field(default=PositionKind.SPOT, description="spot / lp / perp")
    exchange: str = Field(default="backtest", min_length=1, description="Venue")

    # Size and prices
    amount: Amount = Field(..., description="Signed quantity (negative = short)")
    entry_price: Price = Field(..., description="Average entry price")
    current_price: Price = Field(..., description="Last mark price")

    # Leverage
    collateral_amount: Amount = Field(default_factory=Amount.zero, description="Posted collateral")
    borrowed_amount: Amount = Field(default_factory=Amount.zero, description="Borrowed notional")
    leverage: float = Field(default=1.0, ge=1.0, allow_inf_nan=False, description="Leverage (>= 1)")
    liquidation_price: Optional[float] = Field(
        default=None, gt=0, allow_inf_nan=False, description="Exchange liquidation price, if known"
    )

    model_config = {"frozen": True}  # Immutable

    @property
    def side(self) -> PositionSide:
        return PositionSide.LONG if self.amount.value >= 0 else PositionSide.SHORT

    def market_value(self) -> Amount:
        """amount * current_price (negative for shorts)."""
        return self.amount.multiply(self.current_price.value)

    def entry_value(self) -> Amount:
        return self.amount.multiply(self.entry_price.value)

    def unrealized_pnl(self) -> PnL:
        """
        Unrealized PnL.

        amount * (current - entry); the sign of amount makes it correct for shorts.
        """
        return PnL.create(self.market_value().value - self.entry_value().value)

    def margin(self) -> float:
        """Posted collateral, or |market value| / leverage when none is recorded."""
        if not self.collateral_amount.is_zero():
            return self.collateral_amount.value
        return abs(self.market_value().value) / self.leverage

    def update_price(self, new_price: Price) -> "Position":
        return self.model_copy(update={"current_price": new_price})

    def with_amount(self, amount: Amount, entry_price: Optional[Price] = None) -> "Position":
        update: dict = {"amount": amount}
        if entry_price is not None:
            update["entry_price"] = entry_price
        return self.model_copy(update=update)

    def reopened(self, amount: Amount, entry_price: Price) -> "Position":
        """
        Same id and instrument, fresh unleveraged entry (used when a trade flips
        the direction). Collateral, debt and liquidation price are cleared.
        """
        return self.model_copy(
            update={
                "amount": amount,
                "entry_price": entry_price,
                "collateral_amount": Amount.zero(),
                "borrowed_amount": Amount.zero(),
                "leverage": 1.0,
                "liquidation_price": None,
            }
        )

    def valuation(self, apply_il: bool = False) -> Amount:
        """
        Market value, reduced by impermanent loss for LP holdings when `apply_il`.
        """
        if apply_il and self.kind == PositionKind.LP:
            # Local import: core.math depends on core.domain value objects
            from yieldsim.core.math.impermanent_loss import ImpermanentLossCalculator

            return Amount.create(
                ImpermanentLossCalculator.apply_il(
                    self.market_value().value, self.entry_price, self.current_price
                )
            )
        return self.market_value()

    def is_leveraged(self) -> bool:
        return not self.borrowed_amount.is_zero() or self.leverage > 1.0

    def impermanent_loss_pct(self) -> float:
        """IL (percent, <= 0) of the entry → current price move."""
        # Local import: core.math depends on core.domain value objects
        from yieldsim.core.math.impermanent_loss import ImpermanentLossCalculator

        return ImpermanentLossCalculator.calculate_il(self.entry_price, self.current_price)
