"""
Entity configuration management.

Loads entity declarations from YAML files and provides a builder for
declaring entities in code.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from historize.core.errors import ConfigurationError
from historize.core.models import EntityConfig

# Keys a file-level ``defaults`` block may provide
MERGEABLE_DEFAULTS = ("namespace", "far_future", "retry", "source", "duplicate_policy", "strategy")


def build_entity_config(definition: dict[str, Any]) -> EntityConfig:
    """
    Validate a raw entity definition.

    Raises:
        ConfigurationError: Naming the entity and every invalid field
    """
    entity = definition.get("name")
    try:
        return EntityConfig(**definition)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'entity'}: {error['msg']}"
            for error in e.errors()
        )
        raise ConfigurationError(entity, problems) from e
    except TypeError as e:
        raise ConfigurationError(entity, str(e)) from e


class EntityConfigLoader:
    """
    Loads entity declarations from YAML configuration files.

    Expected YAML format:
    ```yaml
    defaults:
      namespace: analytics
      retry:
        max_attempts: 5

    entities:
      - name: silver_bookings
        kind: current_state
        business_key: [BOOKING_ID]
        change_timestamp: CREATED_AT
        column_types:
          NIGHTS_BOOKED: int
          BOOKING_AMOUNT: decimal
        derived_fields:
          - name: TOTAL_BOOKING_AMOUNT
            type: multiply
            inputs: [NIGHTS_BOOKED, BOOKING_AMOUNT]
            precision: 2
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the entity config loader.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            ConfigurationError: If the file does not exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigurationError(None, f"Entity configuration file not found: {config_path}")

    def load_entities(self) -> list[EntityConfig]:
        """
        Load and validate every entity declared in the file.

        Returns:
            Entity configurations in declaration order

        Raises:
            ConfigurationError: If YAML is invalid or an entity is misdeclared
        """
        try:
            with open(self.config_path) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(None, f"Invalid YAML in {self.config_path}: {e}") from e

        if not config or "entities" not in config:
            raise ConfigurationError(None, "Configuration file must contain 'entities' section")
        if not isinstance(config["entities"], list):
            raise ConfigurationError(None, "'entities' must be a list")

        defaults = config.get("defaults") or {}
        unknown_defaults = set(defaults) - set(MERGEABLE_DEFAULTS)
        if unknown_defaults:
            raise ConfigurationError(None, f"Unsupported keys in defaults: {sorted(unknown_defaults)}")

        entities = []
        seen: set[str] = set()
        for idx, definition in enumerate(config["entities"]):
            if not isinstance(definition, dict):
                raise ConfigurationError(None, f"Entity #{idx} must be a mapping")
            entity = build_entity_config(self._apply_defaults(defaults, definition))
            if entity.name in seen:
                raise ConfigurationError(entity.name, "Entity declared more than once")
            seen.add(entity.name)
            entities.append(entity)

        return entities

    def load_entity(self, name: str) -> EntityConfig:
        """Load a single entity by name."""
        for entity in self.load_entities():
            if entity.name == name:
                return entity
        raise ConfigurationError(name, f"Entity not declared in {self.config_path}")

    def _apply_defaults(self, defaults: dict[str, Any], definition: dict[str, Any]) -> dict[str, Any]:
        """
        Merge file-level defaults under an entity definition.

        Nested mappings (source, retry) merge key by key; entity values win.
        """
        merged = dict(definition)
        for key, value in defaults.items():
            if key not in merged:
                merged[key] = value
            elif isinstance(value, dict) and isinstance(merged[key], dict):
                merged[key] = {**value, **merged[key]}
        return merged


class EntityConfigBuilder:
    """
    Programmatically build entity configurations (for testing or dynamic entities).
    """

    def __init__(self, name: str):
        """Initialize a current-state entity declaration."""
        self.definition: dict[str, Any] = {
            "name": name,
            "kind": "current_state",
            "derived_fields": [],
            "column_types": {},
        }

    def keyed_by(self, *fields: str) -> "EntityConfigBuilder":
        """Set the business key fields."""
        self.definition["business_key"] = list(fields)
        return self

    def changed_at(self, field_name: str) -> "EntityConfigBuilder":
        """Set the change timestamp field."""
        self.definition["change_timestamp"] = field_name
        return self

    def historized(
        self,
        strategy: str = "check",
        tracked: list[str] | None = None,
    ) -> "EntityConfigBuilder":
        """Declare the entity as historized with the given strategy."""
        self.definition["kind"] = "historized"
        self.definition["strategy"] = strategy
        if tracked is not None:
            self.definition["tracked_attributes"] = list(tracked)
        return self

    def with_columns(self, *columns: str, **types: str) -> "EntityConfigBuilder":
        """Declare expected source columns and, optionally, their types."""
        self.definition["columns"] = list(columns)
        self.definition["column_types"].update(types)
        return self

    def typed(self, **types: str) -> "EntityConfigBuilder":
        """Declare column types without fixing the column list."""
        self.definition["column_types"].update(types)
        return self

    def add_multiply(self, name: str, left: str, right: str, precision: int = 2) -> "EntityConfigBuilder":
        """Add a rounded product derivation."""
        self.definition["derived_fields"].append({
            "name": name,
            "type": "multiply",
            "inputs": [left, right],
            "precision": precision,
        })
        return self

    def add_sum(self, name: str, *inputs: str, precision: int | None = None) -> "EntityConfigBuilder":
        """Add a sum derivation."""
        self.definition["derived_fields"].append({
            "name": name,
            "type": "sum",
            "inputs": list(inputs),
            "precision": precision,
        })
        return self

    def add_bucket(
        self,
        name: str,
        field_name: str,
        thresholds: list[tuple[Any, str]],
        default: str,
    ) -> "EntityConfigBuilder":
        """Add a categorical bucket derivation."""
        self.definition["derived_fields"].append({
            "name": name,
            "type": "bucket",
            "inputs": [field_name],
            "thresholds": [
                {"upper_bound": bound, "label": label} for bound, label in thresholds
            ],
            "default": default,
        })
        return self

    def project(self, **mapping: str) -> "EntityConfigBuilder":
        """Select and rename output fields (output name -> input name)."""
        self.definition["projection"] = dict(mapping)
        return self

    def set(self, **options: Any) -> "EntityConfigBuilder":
        """Set any other top-level option."""
        self.definition.update(options)
        return self

    def build(self) -> EntityConfig:
        """Build and validate the entity configuration."""
        return build_entity_config(self.definition)
