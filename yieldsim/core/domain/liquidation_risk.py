"""
LiquidationRisk — derived liquidation snapshot for one position

Immutable Pydantic model computed fresh each tick from a Position and the
current mark price. Never stored long-term.

Distance / proximity:
- LONG:  distance = max(0, (mark - liq) / mark)
- SHORT: distance = max(0, (liq - mark) / mark)
- mark <= 0 or liq <= 0 (missing data) → distance = 1 (maximally safe)
- proximity = 1 - distance

Risk buckets (fixed):
- proximity >= 0.7 → CRITICAL
- proximity >= 0.5 → DANGER
- proximity >= 0.3 → WARNING
- otherwise       → SAFE
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Final

from pydantic import BaseModel, Field

from .position import PositionSide


# =============================================================================
# CONSTANTS
# =============================================================================

CRITICAL_PROXIMITY: Final[float] = 0.7
DANGER_PROXIMITY: Final[float] = 0.5
WARNING_PROXIMITY: Final[float] = 0.3

DEFAULT_EMERGENCY_CLOSE_THRESHOLD: Final[float] = 0.7


# =============================================================================
# ENUMS
# =============================================================================


class RiskLevel(str, Enum):
    """Liquidation risk bucket"""

    SAFE = "SAFE"
    WARNING = "WARNING"
    DANGER = "DANGER"
    CRITICAL = "CRITICAL"


# =============================================================================
# PURE FUNCTIONS
# =============================================================================


def distance_to_liquidation(mark_price: float, liquidation_price: float, side: PositionSide) -> float:
    """
    Normalized distance between mark and liquidation price, in [0, 1].

    Returns:
        1.0 when either price is non-positive (no liquidation data → assumed safe)
    """
    if mark_price <= 0 or liquidation_price <= 0:
        return 1.0

    if side == PositionSide.LONG:
        # Long liquidates when price falls to liq
        return max(0.0, (mark_price - liquidation_price) / mark_price)
    # Short liquidates when price rises to liq
    return max(0.0, (liquidation_price - mark_price) / mark_price)


def risk_level_for(proximity: float) -> RiskLevel:
    if proximity >= CRITICAL_PROXIMITY:
        return RiskLevel.CRITICAL
    if proximity >= DANGER_PROXIMITY:
        return RiskLevel.DANGER
    if proximity >= WARNING_PROXIMITY:
        return RiskLevel.WARNING
    return RiskLevel.SAFE


# =============================================================================
# LIQUIDATION RISK MODEL
# =============================================================================


class LiquidationRisk(BaseModel):
    """
    Liquidation risk snapshot.

    Immutable model (frozen=True).
    """

    symbol: str = Field(..., min_length=1, description="Asset symbol")
    exchange: str = Field(..., min_length=1, description="Venue")
    side: PositionSide = Field(..., description="LONG / SHORT")

    mark_price: float = Field(..., ge=0, allow_inf_nan=False, description="Current mark price")
    liquidation_price: float = Field(..., ge=0, allow_inf_nan=False, description="Liquidation price")
    entry_price: float = Field(..., ge=0, allow_inf_nan=False, description="Entry price")

    position_size: float = Field(..., ge=0, allow_inf_nan=False, description="Absolute size")
    position_value_usd: float = Field(..., ge=0, allow_inf_nan=False, description="Absolute notional")
    margin: float = Field(..., ge=0, allow_inf_nan=False, description="Margin backing the position")
    leverage: float = Field(..., ge=1, allow_inf_nan=False, description="Leverage")

    timestamp: datetime = Field(..., description="Snapshot time")

    model_config = {"frozen": True}  # Immutable

    @classmethod
    def create(
        cls,
        symbol: str,
        exchange: str,
        side: PositionSide,
        mark_price: float,
        liquidation_price: float,
        entry_price: float,
        position_size: float,
        position_value_usd: float,
        margin: float,
        leverage: float,
        timestamp: datetime | None = None,
    ) -> "LiquidationRisk":
        return cls(
            symbol=symbol,
            exchange=exchange,
            side=side,
            mark_price=mark_price,
            liquidation_price=liquidation_price,
            entry_price=entry_price,
            position_size=position_size,
            position_value_usd=position_value_usd,
            margin=margin,
            leverage=leverage,
            timestamp=timestamp or datetime.now(timezone.utc),
        )

    @classmethod
    def safe(
        cls,
        symbol: str,
        exchange: str,
        side: PositionSide,
        timestamp: datetime | None = None,
    ) -> "LiquidationRisk":
        """Placeholder when liquidation data is unavailable (proximity = 0)."""
        return cls.create(
            symbol=symbol,
            exchange=exchange,
            side=side,
            mark_price=0.0,
            liquidation_price=0.0,
            entry_price=0.0,
            position_size=0.0,
            position_value_usd=0.0,
            margin=0.0,
            leverage=1.0,
            timestamp=timestamp,
        )

    @property
    def distance_to_liquidation(self) -> float:
        return distance_to_liquidation(self.mark_price, self.liquidation_price, self.side)

    @property
    def proximity_to_liquidation(self) -> float:
        """0 = far from liquidation, 1 = at liquidation."""
        return 1.0 - self.distance_to_liquidation

    @property
    def price_to_liquidation(self) -> float:
        """Absolute price move to liquidation."""
        return abs(self.mark_price - self.liquidation_price)

    @property
    def percent_to_liquidation(self) -> float:
        """Percentage price move to liquidation (100 when mark is unknown)."""
        if self.mark_price <= 0:
            return 100.0
        return self.price_to_liquidation / self.mark_price * 100

    @property
    def risk_level(self) -> RiskLevel:
        return risk_level_for(self.proximity_to_liquidation)

    def is_placeholder(self) -> bool:
        return self.mark_price <= 0 or self.liquidation_price <= 0

    def should_emergency_close(self, threshold: float = DEFAULT_EMERGENCY_CLOSE_THRESHOLD) -> bool:
        """True iff proximity >= threshold."""
        return self.proximity_to_liquidation >= threshold

    def __str__(self) -> str:
        return (
            f"LiquidationRisk({self.symbol}@{self.exchange} {self.side.value}): "
            f"{self.percent_to_liquidation:.1f}% to liq, "
            f"proximity={self.proximity_to_liquidation * 100:.1f}%, "
            f"risk={self.risk_level.value}"
        )
