"""
Portfolio Health

Collateral coverage of leveraged positions and the gross exposure of a
portfolio. Positions are read, never modified.

health factor = collateral / borrowed. Both amounts are in units of the
position's asset, so the mark price cancels out. A value below 1.0 means the
debt is no longer covered. None is returned when nothing is borrowed.
"""

from typing import Optional

from yieldsim.core.domain.portfolio import Portfolio
from yieldsim.core.domain.position import Position


def position_health_factor(position: Position) -> Optional[float]:
    """Health factor of one position (None if it carries no debt)."""
    borrowed = abs(position.borrowed_amount.value)
    if not position.is_leveraged() or borrowed == 0:
        return None
    return abs(position.collateral_amount.value) / borrowed


def portfolio_health_factor(portfolio: Portfolio) -> Optional[float]:
    """
    Aggregate health factor over leveraged positions.

    Returns:
        sum(collateral) / sum(borrowed), or None when nothing is borrowed
    """
    collateral = 0.0
    borrowed = 0.0
    for position in portfolio.positions:
        if position.is_leveraged():
            collateral += abs(position.collateral_amount.value)
            borrowed += abs(position.borrowed_amount.value)

    if borrowed == 0:
        return None
    return collateral / borrowed


def total_exposure(portfolio: Portfolio, apply_il: bool = False) -> float:
    """Gross exposure: sum of |position value| (shorts count positively)."""
    return sum(abs(position.valuation(apply_il).value) for position in portfolio.positions)


def portfolio_leverage(portfolio: Portfolio, apply_il: bool = False) -> float:
    """
    Gross exposure / total value.

    Falls back to 1.0 when the total value is not positive.
    """
    total = portfolio.total_value(apply_il).value
    if total <= 0:
        return 1.0
    return total_exposure(portfolio, apply_il) / total
