"""
EntityConfig model declaring how one entity is loaded and historized.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from historize.core.timeutil import FAR_FUTURE, ensure_utc

COLUMN_TYPES = ("int", "integer", "decimal", "float", "double", "string", "str", "bool", "boolean", "timestamp", "date")


class SourceOptions(BaseModel):
    """
    Where an entity's staged rows come from and how tolerant parsing is.

    Attributes:
        path: File path of the staged CSV (may be overridden on the command line)
        format: Source format (only "csv" is read natively)
        header: Whether the first row is a header to skip
        delimiter: Field delimiter
        tolerate_column_mismatch: Keep rows whose column count differs from
            the declared columns instead of rejecting them
    """

    path: str | None = None
    format: Literal["csv"] = "csv"
    header: bool = True
    delimiter: str = Field(",", min_length=1, max_length=1)
    tolerate_column_mismatch: bool = False


class RetryPolicy(BaseModel):
    """
    Bounded retry with exponential backoff for persisted-state calls.

    Attributes:
        max_attempts: Attempts before the run fails fatally
        base_delay: Delay in seconds before the second attempt
        max_delay: Upper bound for any single delay
    """

    max_attempts: int = Field(3, ge=1)
    base_delay: float = Field(0.5, ge=0.0)
    max_delay: float = Field(30.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


class BucketThreshold(BaseModel):
    """Upper bound (exclusive) and label of one bucket."""

    upper_bound: Decimal
    label: str


class DerivedFieldConfig(BaseModel):
    """
    One derived field computed from fields of the same record.

    Attributes:
        name: Output field name
        type: "multiply", "sum" or "bucket"
        inputs: Input field names (two for multiply, one for bucket)
        precision: Decimal places to round to (required for multiply)
        thresholds: Ordered bucket thresholds; first ``value < upper_bound`` wins
        default: Bucket label when no threshold matches
    """

    name: str = Field(..., min_length=1)
    type: Literal["multiply", "sum", "bucket"]
    inputs: list[str] = Field(..., min_length=1)
    precision: int | None = Field(None, ge=0)
    thresholds: list[BucketThreshold] = Field(default_factory=list)
    default: str | None = None

    @model_validator(mode="after")
    def check_type_parameters(self) -> "DerivedFieldConfig":
        """Validate the parameters each derivation type needs."""
        if self.type == "multiply":
            if len(self.inputs) != 2:
                raise ValueError(f"multiply derivation '{self.name}' needs exactly 2 inputs")
            if self.precision is None:
                raise ValueError(f"multiply derivation '{self.name}' needs a precision")
        elif self.type == "bucket":
            if len(self.inputs) != 1:
                raise ValueError(f"bucket derivation '{self.name}' needs exactly 1 input")
            if not self.thresholds:
                raise ValueError(f"bucket derivation '{self.name}' needs at least one threshold")
            if self.default is None:
                raise ValueError(f"bucket derivation '{self.name}' needs a default label")
        return self


class EntityConfig(BaseModel):
    """
    Declaration of one entity.

    Attributes:
        name: Entity name; also the output table name
        kind: "current_state" (overwrite in place) or "historized" (SCD2 versions)
        business_key: Source fields forming the unique business key
        change_timestamp: Source field holding the created/updated-at timestamp
        strategy: Change detection for historized entities, "check" or "timestamp"
        tracked_attributes: Output fields whose change opens a new version
        columns: Expected source columns, in order (enables the column-count check)
        column_types: Type to coerce each source column to
        derived_fields: Derivations evaluated in declaration order
        projection: Ephemeral select/rename of output fields (output -> input)
        duplicate_policy: Which of two same-key, same-timestamp records wins
        far_future: Sentinel valid_to for current versions
        namespace: Output schema the store writes into
        source: Source options
        retry: Retry policy for persisted-state calls
    """

    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$", max_length=63)
    kind: Literal["current_state", "historized"] = "current_state"
    business_key: list[str] = Field(..., min_length=1)
    change_timestamp: str = Field(..., min_length=1)
    strategy: Literal["check", "timestamp"] = "check"
    tracked_attributes: list[str] = Field(default_factory=list)
    columns: list[str] | None = None
    column_types: dict[str, str] = Field(default_factory=dict)
    derived_fields: list[DerivedFieldConfig] = Field(default_factory=list)
    projection: dict[str, str] | None = None
    duplicate_policy: Literal["last", "first"] = "last"
    far_future: datetime = FAR_FUTURE
    namespace: str = Field("analytics", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$", max_length=63)
    source: SourceOptions = Field(default_factory=SourceOptions)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @field_validator("far_future")
    @classmethod
    def normalize_far_future(cls, v: datetime) -> datetime:
        """Store the sentinel as aware UTC."""
        return ensure_utc(v)

    @field_validator("column_types")
    @classmethod
    def check_column_types(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate that every declared column type is supported."""
        for column, type_name in v.items():
            if type_name.lower() not in COLUMN_TYPES:
                raise ValueError(f"Unsupported type '{type_name}' for column '{column}'")
        return {column: type_name.lower() for column, type_name in v.items()}

    @model_validator(mode="after")
    def check_declarations(self) -> "EntityConfig":
        """Validate cross-field declarations."""
        if self.kind == "historized" and self.strategy == "check" and not self.tracked_attributes:
            raise ValueError("historized entity with 'check' strategy needs tracked_attributes")

        if self.columns is not None:
            missing = [
                field for field in [*self.business_key, self.change_timestamp]
                if field not in self.columns
            ]
            if missing:
                raise ValueError(f"business key / change timestamp not among columns: {missing}")

        available = self.output_fields()
        if available is not None:
            unknown = [field for field in self.tracked_attributes if field not in available]
            if unknown:
                raise ValueError(f"tracked attributes not produced by the entity: {unknown}")
        return self

    @property
    def historized(self) -> bool:
        return self.kind == "historized"

    def output_fields(self) -> list[str] | None:
        """
        Names of the fields an output row carries, when they can be known
        statically (declared columns or an explicit projection).
        """
        if self.projection is not None:
            return list(self.projection)
        if self.columns is None:
            return None
        return [*self.columns, *(derived.name for derived in self.derived_fields)]
