"""
Error kinds raised by the simulation core.

Hierarchy:
- YieldSimError
  - ValueObjectError   — invariant violation in a value object (also a ValueError)
  - ConfigError        — strategy config rejected before the first tick
  - SimulationError    — run aborted at a tick (strategy failure, invalid portfolio state)
  - DataGapError       — too many consecutive ticks missing required fields

All aborts are terminal for the run: the core never retries.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from yieldsim.backtest.result import BacktestResult


class YieldSimError(Exception):
    """Base class for all simulation core errors."""


class ValueObjectError(YieldSimError, ValueError):
    """Value object constructed or combined outside its valid range."""


class ConfigError(YieldSimError):
    """Strategy or engine configuration rejected."""


class SimulationError(YieldSimError):
    """
    Run aborted at a specific tick.

    Attributes:
        tick_index: Index of the tick being processed when the run aborted
            (None if the abort happened outside the tick loop)
        reason: Human-readable reason
        partial_result: History up to the last completed tick
    """

    def __init__(
        self,
        reason: str,
        tick_index: Optional[int] = None,
        partial_result: Optional["BacktestResult"] = None,
    ):
        self.reason = reason
        self.tick_index = tick_index
        self.partial_result = partial_result
        if tick_index is None:
            super().__init__(reason)
        else:
            super().__init__(f"tick {tick_index}: {reason}")


class DataGapError(SimulationError):
    """Consecutive data gaps exceeded the configured maximum."""

    def __init__(
        self,
        reason: str,
        tick_index: Optional[int] = None,
        missing_fields: tuple[str, ...] = (),
        partial_result: Optional["BacktestResult"] = None,
    ):
        super().__init__(reason, tick_index=tick_index, partial_result=partial_result)
        self.missing_fields = missing_fields
