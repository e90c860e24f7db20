"""
Value Objects — immutable validated scalars

Price, Amount, APR, IV, PnL, FundingRate.

Immutable Pydantic models (frozen=True). Construction validates the invariant of
each type; every arithmetic operation returns a new instance and re-validates.
Equality is value equality on the underlying scalar.

`create()` is the public constructor: it raises ValueObjectError (a ValueError)
instead of pydantic's ValidationError so that callers only deal with the
domain error kind.
"""

from enum import Enum
from typing import Final, TypeVar

from pydantic import BaseModel, Field, model_serializer, model_validator
from pydantic import ValidationError as PydanticValidationError

from yieldsim.core.errors import ValueObjectError


# =============================================================================
# CONSTANTS
# =============================================================================

IV_MIN: Final[float] = 0.0
IV_MAX: Final[float] = 1000.0

# Default IV regime thresholds (percent)
IV_LOW_THRESHOLD: Final[float] = 30.0
IV_HIGH_THRESHOLD: Final[float] = 70.0

# 8-hour funding → 3 funding periods per day
FUNDING_PERIODS_PER_DAY: Final[int] = 3

BASIS_POINTS_PER_UNIT: Final[float] = 10_000.0


_T = TypeVar("_T", bound="ScalarValue")


# =============================================================================
# BASE
# =============================================================================


class ScalarValue(BaseModel):
    """
    Base class for single-scalar value objects.

    NaN and Inf are rejected for every subtype.
    """

    value: float = Field(..., allow_inf_nan=False, description="Underlying scalar")

    model_config = {"frozen": True}  # Immutable

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_scalar(cls, data):
        """Accept a bare number wherever a value object is expected."""
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return {"value": data}
        return data

    @model_serializer
    def serialize_as_scalar(self) -> float:
        """Serialize as the plain scalar (JSON contracts carry numbers)."""
        return self.value

    @classmethod
    def create(cls: type[_T], value: float) -> _T:
        """
        Construct a validated instance.

        Raises:
            ValueObjectError: If value violates the invariant of the type
        """
        try:
            return cls(value=value)
        except PydanticValidationError as exc:
            raise ValueObjectError(
                f"Invalid {cls.__name__} value {value!r}: {exc.errors()[0]['msg']}"
            ) from exc

    def equals(self, other: "ScalarValue") -> bool:
        return type(self) is type(other) and self.value == other.value

    def __float__(self) -> float:
        return self.value


# =============================================================================
# PRICE
# =============================================================================


class Price(ScalarValue):
    """Strictly positive price (quote currency per unit)."""

    value: float = Field(..., gt=0, allow_inf_nan=False, description="Price (> 0)")

    def multiply(self, factor: float) -> "Price":
        return Price.create(self.value * factor)

    def divide(self, divisor: float) -> "Price":
        """
        Raises:
            ValueObjectError: On division by zero or a non-positive result
        """
        if divisor == 0:
            raise ValueObjectError("Cannot divide Price by zero")
        return Price.create(self.value / divisor)

    def percentage_change(self, other: "Price") -> float:
        """
        Percentage change from this price to `other`.

        Returns:
            (other - self) / self * 100
        """
        return (other.value - self.value) / self.value * 100


# =============================================================================
# AMOUNT
# =============================================================================


class Amount(ScalarValue):
    """
    Quantity of an asset or cash.

    Signed: cash may be debited below zero when the engine allows it, and short
    positions carry a negative quantity.
    """

    @classmethod
    def zero(cls) -> "Amount":
        return cls(value=0.0)

    def add(self, other: "Amount") -> "Amount":
        return Amount.create(self.value + other.value)

    def subtract(self, other: "Amount") -> "Amount":
        return Amount.create(self.value - other.value)

    def multiply(self, factor: float) -> "Amount":
        return Amount.create(self.value * factor)

    def negate(self) -> "Amount":
        return Amount.create(-self.value)

    def is_zero(self) -> bool:
        return self.value == 0

    def is_negative(self) -> bool:
        return self.value < 0


# =============================================================================
# APR
# =============================================================================


class APR(ScalarValue):
    """Annualized rate of return, stored as a percentage (12.5 = 12.5%)."""

    @classmethod
    def from_decimal(cls, decimal: float) -> "APR":
        return cls.create(decimal * 100)

    @classmethod
    def zero(cls) -> "APR":
        return cls(value=0.0)

    def to_decimal(self) -> float:
        return self.value / 100

    def period_return(self, periods_per_year: float) -> float:
        """
        Simple (non-compounded) return per period, as a decimal.

        Raises:
            ValueObjectError: If periods_per_year <= 0
        """
        if periods_per_year <= 0:
            raise ValueObjectError(f"periods_per_year must be positive, got {periods_per_year}")
        return self.to_decimal() / periods_per_year

    def add(self, other: "APR") -> "APR":
        return APR.create(self.value + other.value)

    def subtract(self, other: "APR") -> "APR":
        return APR.create(self.value - other.value)


# =============================================================================
# IV
# =============================================================================


class IVRegime(str, Enum):
    """Volatility regime bucket"""

    LOW = "low"
    MID = "mid"
    HIGH = "high"


class IV(ScalarValue):
    """Implied/realized volatility in percent, within [0, 1000]."""

    value: float = Field(
        ..., ge=IV_MIN, le=IV_MAX, allow_inf_nan=False, description="Volatility (%)"
    )

    def to_decimal(self) -> float:
        return self.value / 100

    def is_low(self, threshold: float = IV_LOW_THRESHOLD) -> bool:
        return self.value < threshold

    def is_mid(
        self,
        low_threshold: float = IV_LOW_THRESHOLD,
        high_threshold: float = IV_HIGH_THRESHOLD,
    ) -> bool:
        """Inside [low_threshold, high_threshold], both bounds inclusive."""
        return low_threshold <= self.value <= high_threshold

    def is_high(self, threshold: float = IV_HIGH_THRESHOLD) -> bool:
        return self.value > threshold

    def regime(
        self,
        low_threshold: float = IV_LOW_THRESHOLD,
        high_threshold: float = IV_HIGH_THRESHOLD,
    ) -> IVRegime:
        """
        Classify into low/mid/high.

        Raises:
            ValueObjectError: If low_threshold > high_threshold
        """
        if low_threshold > high_threshold:
            raise ValueObjectError(
                f"low_threshold {low_threshold} must not exceed high_threshold {high_threshold}"
            )
        if self.is_mid(low_threshold, high_threshold):
            return IVRegime.MID
        if self.is_low(low_threshold):
            return IVRegime.LOW
        return IVRegime.HIGH


# =============================================================================
# PnL
# =============================================================================


class PnL(ScalarValue):
    """Signed profit and loss in quote currency."""

    @classmethod
    def zero(cls) -> "PnL":
        return cls(value=0.0)

    def is_positive(self) -> bool:
        return self.value > 0

    def is_negative(self) -> bool:
        return self.value < 0

    def is_zero(self) -> bool:
        return self.value == 0

    def add(self, other: "PnL") -> "PnL":
        return PnL.create(self.value + other.value)

    def subtract(self, other: "PnL") -> "PnL":
        return PnL.create(self.value - other.value)


# =============================================================================
# FUNDING RATE
# =============================================================================


class FundingRate(ScalarValue):
    """
    Perpetual funding rate per funding period, as a decimal (0.0001 = 1 bp).

    Sign convention: positive rate → longs pay shorts.
    """

    @classmethod
    def from_basis_points(cls, basis_points: float) -> "FundingRate":
        return cls.create(basis_points / BASIS_POINTS_PER_UNIT)

    def to_basis_points(self) -> float:
        return self.value * BASIS_POINTS_PER_UNIT

    def to_apr(self, periods_per_day: int = FUNDING_PERIODS_PER_DAY) -> APR:
        """Annualized rate assuming `periods_per_day` funding events every day."""
        return APR.from_decimal(self.value * 365 * periods_per_day)

    def is_positive(self) -> bool:
        return self.value > 0

    def is_negative(self) -> bool:
        return self.value < 0
