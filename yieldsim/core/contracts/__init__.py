"""
Contract Validation Module

JSON Schema contracts for the serialized outputs of the engine.
"""

from .validators import (
    BacktestResultValidator,
    ContractValidator,
    DomainEventValidator,
    SchemaLoader,
    validate_backtest_result,
    validate_domain_event,
)

__all__ = [
    # Classes
    "SchemaLoader",
    "ContractValidator",
    "BacktestResultValidator",
    "DomainEventValidator",
    # Functions
    "validate_backtest_result",
    "validate_domain_event",
]
