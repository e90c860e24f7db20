"""
Impermanent Loss Calculator

IL of a 50/50 constant-product liquidity position versus holding the assets:

    IL = 2 * sqrt(r) / (1 + r) - 1,   r = current_price / entry_price

Expressed as a percentage. By AM-GM, 2*sqrt(r) <= 1 + r, so IL <= 0 for every
r > 0 and IL == 0 only at r == 1. The result is clamped at 0 from above so that
floating-point noise can never report a gain.
"""

import math

from yieldsim.core.domain.value_objects import Price


def _il_from_ratio(price_ratio: float) -> float:
    if price_ratio <= 0:
        raise ValueError(f"price ratio must be positive, got {price_ratio}")
    il = (2 * math.sqrt(price_ratio)) / (1 + price_ratio) - 1
    return min(il, 0.0) * 100


class ImpermanentLossCalculator:
    """Stateless IL helpers."""

    @staticmethod
    def calculate_il(entry_price: Price, current_price: Price) -> float:
        """
        IL for a move from entry_price to current_price.

        Args:
            entry_price: Price when liquidity was added
            current_price: Current price

        Returns:
            IL in percent (<= 0; e.g. -5.72 for a 2x move)
        """
        return _il_from_ratio(current_price.value / entry_price.value)

    @staticmethod
    def calculate_il_for_price_change(price_change_pct: float) -> float:
        """
        IL for a relative price move.

        Args:
            price_change_pct: Price change in percent (10 = +10%)

        Returns:
            IL in percent (<= 0)

        Raises:
            ValueError: If price_change_pct <= -100 (price would be non-positive)
        """
        if price_change_pct <= -100:
            raise ValueError(f"price change {price_change_pct}% leaves a non-positive price")
        return _il_from_ratio(1 + price_change_pct / 100)

    @staticmethod
    def apply_il(original_value: float, entry_price: Price, current_price: Price) -> float:
        """original_value scaled by (1 + IL/100)."""
        il_pct = ImpermanentLossCalculator.calculate_il(entry_price, current_price)
        return original_value * (1 + il_pct / 100)
