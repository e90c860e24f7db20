"""
MarketData — a single tick of the replayed series

Immutable Pydantic model. `price` is the reference mark for the tick; the
optional `prices` map carries per-asset marks for multi-asset portfolios.
Strategy-specific fields go into `extra`.
"""

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from .value_objects import IV, Amount, FundingRate, Price


# Names resolved against model attributes before falling back to `extra`
_OPTIONAL_FIELDS = ("iv", "funding_rate", "volume")


class MarketData(BaseModel):
    """
    Market data tick.

    Immutable model (frozen=True).
    """

    price: Price = Field(..., description="Reference mark price")
    timestamp: datetime = Field(..., description="Tick time")

    iv: Optional[IV] = Field(None, description="Implied/realized volatility (nullable)")
    funding_rate: Optional[FundingRate] = Field(None, description="Funding rate (nullable)")
    volume: Optional[Amount] = Field(None, description="Traded volume (nullable)")

    prices: Mapping[str, Price] = Field(
        default_factory=dict, description="Per-asset marks for multi-asset ticks"
    )
    extra: Mapping[str, Any] = Field(
        default_factory=dict, description="Strategy-specific fields"
    )

    model_config = {"frozen": True}  # Immutable

    def price_for(self, asset: str) -> Price:
        """Mark for `asset`, falling back to the reference price."""
        return self.prices.get(asset, self.price)

    def has_field(self, name: str) -> bool:
        """
        True if the tick carries a non-null value for `name`.

        `price` and `timestamp` are always present; `iv`, `funding_rate` and
        `volume` are checked on the model; anything else is looked up in `extra`
        (or `prices` for "price:<asset>").
        """
        if name in ("price", "timestamp"):
            return True
        if name in _OPTIONAL_FIELDS:
            return getattr(self, name) is not None
        if name.startswith("price:"):
            return name.split(":", 1)[1] in self.prices
        return self.extra.get(name) is not None

    def get(self, name: str, default: Any = None) -> Any:
        if name in ("price", "timestamp") or name in _OPTIONAL_FIELDS:
            value = getattr(self, name)
            return default if value is None else value
        return self.extra.get(name, default)

    def missing_fields(self, required: tuple[str, ...] | list[str]) -> tuple[str, ...]:
        return tuple(name for name in required if not self.has_field(name))
