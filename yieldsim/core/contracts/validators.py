"""
JSON Schema Contract Validators

Validate serialized engine outputs against formal JSON Schema (Draft 2020-12)
contracts, so downstream report writers can rely on stable field semantics.

Schemas (shipped inside the package, contracts/schema/):
- backtest_result.json — BacktestResult.to_contract_dict()
- domain_event.json    — DomainEvent.model_dump(mode="json")
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import jsonschema
from jsonschema import Draft202012Validator, ValidationError


# =============================================================================
# SCHEMA LOADER
# =============================================================================


class SchemaLoader:
    """
    Loads JSON Schema files.

    Looks for schemas in the `schema/` directory next to this module unless a
    directory is given explicitly.
    """

    def __init__(self, schema_dir: Optional[Path] = None):
        self._schema_dir = schema_dir or Path(__file__).parent / "schema"
        if not self._schema_dir.exists():
            raise RuntimeError(f"Schema directory not found: {self._schema_dir}")

        # Cache of loaded schemas
        self._schemas: Dict[str, Dict[str, Any]] = {}

    def load_schema(self, schema_name: str) -> Dict[str, Any]:
        """
        Load and meta-validate a JSON Schema file.

        Args:
            schema_name: Schema name without extension (e.g. 'backtest_result')

        Returns:
            Loaded schema as dict

        Raises:
            FileNotFoundError: If the schema file does not exist
            ValueError: If the file is not a valid Draft 2020-12 schema
        """
        if schema_name in self._schemas:
            return self._schemas[schema_name]

        schema_path = self._schema_dir / f"{schema_name}.json"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema not found: {schema_path}")

        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)

        try:
            Draft202012Validator.check_schema(schema)
        except jsonschema.SchemaError as e:
            raise ValueError(f"Invalid JSON Schema in {schema_name}.json: {e}") from e

        self._schemas[schema_name] = schema
        return schema


# Shared loader instance
_SCHEMA_LOADER = SchemaLoader()


# =============================================================================
# CONTRACT VALIDATORS
# =============================================================================


class ContractValidator:
    """Validates data against one named JSON Schema."""

    def __init__(self, schema_name: str, loader: Optional[SchemaLoader] = None):
        self.schema_name = schema_name
        self.schema = (loader or _SCHEMA_LOADER).load_schema(schema_name)
        self.validator = Draft202012Validator(self.schema)

    def validate(self, data: Dict[str, Any]) -> None:
        """
        Raises:
            ValidationError: If data does not match the schema
        """
        self.validator.validate(data)

    def is_valid(self, data: Dict[str, Any]) -> bool:
        return self.validator.is_valid(data)

    def iter_errors(self, data: Dict[str, Any]) -> Iterator[ValidationError]:
        """Every validation error, for diagnostics."""
        return self.validator.iter_errors(data)


class BacktestResultValidator(ContractValidator):
    """Validator for the backtest_result contract."""

    def __init__(self):
        super().__init__("backtest_result")


class DomainEventValidator(ContractValidator):
    """Validator for the domain_event contract (all three event variants)."""

    def __init__(self):
        super().__init__("domain_event")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def validate_backtest_result(data: Dict[str, Any]) -> None:
    """
    Validate a serialized BacktestResult.

    Raises:
        ValidationError: If data does not match the schema
    """
    BacktestResultValidator().validate(data)


def validate_domain_event(data: Dict[str, Any]) -> None:
    """
    Validate a serialized domain event.

    Raises:
        ValidationError: If data does not match the schema
    """
    DomainEventValidator().validate(data)
