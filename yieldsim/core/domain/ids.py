"""
Id sources for trades and domain events.

Backtests must be reproducible, so the default source is a monotonic counter:
two runs over the same inputs yield identical ids. UuidIdGenerator is available
for callers that need globally unique ids.
"""

import itertools
import uuid
from typing import Protocol, runtime_checkable


@runtime_checkable
class IdGenerator(Protocol):
    """Injectable id source"""

    def next_id(self, prefix: str) -> str:
        ...


class SequentialIdGenerator:
    """
    Monotonic ids: "<prefix>-000001", "<prefix>-000002", ...

    The counter is shared across prefixes so ids are comparable by creation order.
    """

    def __init__(self, start: int = 1, width: int = 6):
        if start < 0:
            raise ValueError(f"start must be non-negative, got {start}")
        self._counter = itertools.count(start)
        self._width = width

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._counter):0{self._width}d}"


class UuidIdGenerator:
    """Random UUID4 ids, not reproducible across runs."""

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex}"
