"""
Portfolio — aggregate root of a backtest

Owns cash and the open positions keyed by id (insertion order preserved for
deterministic iteration). Positions are immutable; the portfolio swaps whole
instances on update.

Invariants:
- position ids are unique
- total_value() == cash + sum(position.market_value())
- total_value(apply_il=True) values LP positions net of impermanent loss
- total_pnl()   == sum(position.unrealized_pnl())

Mutated only by the engine running the backtest, one tick at a time.
"""

from typing import Callable, Iterator, Optional

from yieldsim.core.errors import ValueObjectError

from .position import Position
from .value_objects import Amount, PnL, Price


class Portfolio:
    """Mutable aggregate of cash and positions."""

    def __init__(
        self,
        portfolio_id: str,
        cash: Amount,
        positions: Optional[list[Position]] = None,
    ):
        """
        Args:
            portfolio_id: Portfolio identifier
            cash: Initial cash balance
            positions: Initial positions (ids must be unique)
        """
        if not portfolio_id:
            raise ValueObjectError("portfolio_id must be non-empty")
        self.id = portfolio_id
        self._cash = cash
        self._positions: dict[str, Position] = {}
        for position in positions or []:
            self.add_position(position)

    # -------------------------------------------------------------------------
    # Cash
    # -------------------------------------------------------------------------

    @property
    def cash(self) -> Amount:
        return self._cash

    def credit(self, amount: Amount) -> None:
        self._cash = self._cash.add(amount)

    def debit(self, amount: Amount) -> None:
        self._cash = self._cash.subtract(amount)

    # -------------------------------------------------------------------------
    # Positions
    # -------------------------------------------------------------------------

    @property
    def positions(self) -> tuple[Position, ...]:
        """Snapshot of open positions in insertion order."""
        return tuple(self._positions.values())

    def __iter__(self) -> Iterator[Position]:
        return iter(self.positions)

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._positions

    def add_position(self, position: Position, cost: Optional[Amount] = None) -> None:
        """
        Add a new position, optionally debiting its cost from cash.

        Raises:
            ValueObjectError: If a position with the same id already exists
        """
        if position.id in self._positions:
            raise ValueObjectError(f"Position {position.id!r} already exists in portfolio {self.id!r}")
        self._positions[position.id] = position
        if cost is not None:
            self.debit(cost)

    def remove_position(self, position_id: str) -> Position:
        """
        Raises:
            KeyError: If the position does not exist
        """
        if position_id not in self._positions:
            raise KeyError(f"Position {position_id!r} not found in portfolio {self.id!r}")
        return self._positions.pop(position_id)

    def get_position(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def update_position(self, position: Position) -> None:
        """
        Replace an existing position (keeps its place in iteration order).

        Raises:
            KeyError: If the position does not exist
        """
        if position.id not in self._positions:
            raise KeyError(f"Position {position.id!r} not found in portfolio {self.id!r}")
        self._positions[position.id] = position

    def upsert_position(self, position: Position) -> None:
        if position.id in self._positions:
            self.update_position(position)
        else:
            self.add_position(position)

    def mark_to_market(self, price_lookup: Callable[[str], Price]) -> None:
        """Update every position's current price from `price_lookup(asset)`."""
        for position_id, position in list(self._positions.items()):
            self._positions[position_id] = position.update_price(price_lookup(position.asset))

    # -------------------------------------------------------------------------
    # Valuation
    # -------------------------------------------------------------------------

    def positions_value(self, apply_il: bool = False) -> Amount:
        total = Amount.zero()
        for position in self._positions.values():
            total = total.add(position.valuation(apply_il))
        return total

    def total_value(self, apply_il: bool = False) -> Amount:
        """
        cash + sum of position values.

        Args:
            apply_il: Value LP positions net of impermanent loss since entry
        """
        return self._cash.add(self.positions_value(apply_il))

    def total_pnl(self) -> PnL:
        """Sum of unrealized PnL over open positions."""
        total = PnL.zero()
        for position in self._positions.values():
            total = total.add(position.unrealized_pnl())
        return total

    def copy(self, portfolio_id: Optional[str] = None) -> "Portfolio":
        """Independent copy (positions are immutable and can be shared)."""
        return Portfolio(portfolio_id or self.id, self._cash, list(self._positions.values()))

    def __repr__(self) -> str:
        return (
            f"Portfolio(id={self.id!r}, cash={self._cash.value:.2f}, "
            f"positions={len(self._positions)}, total_value={self.total_value().value:.2f})"
        )
