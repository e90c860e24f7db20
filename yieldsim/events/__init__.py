"""Domain events and the synchronous event bus."""

from .bus import DomainEventBus, EventHandler, EventRecorder
from .models import (
    DomainEvent,
    EventFactory,
    RebalanceTriggered,
    RiskLimitBreached,
    TradeExecuted,
)

__all__ = [
    # Models
    "DomainEvent",
    "TradeExecuted",
    "RebalanceTriggered",
    "RiskLimitBreached",
    "EventFactory",
    # Bus
    "DomainEventBus",
    "EventHandler",
    "EventRecorder",
]
