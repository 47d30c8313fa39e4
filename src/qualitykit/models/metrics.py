"""
Metric definition models.

A metric definition is a named, reusable, deterministic computation over one
relation (single-table checks) or two relations (cross-table and referential
checks). Its declared input shape lists the typed columns each relation must
provide; bindings map an entity's actual columns onto that shape by position.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple, Union

from pydantic import Field, field_validator, model_validator

from .base import BaseQualityModel
from .enums import ColumnType, normalize_column_type


class ColumnSpec(BaseQualityModel):
    """A named, typed column. Names are case-insensitive and stored lower case."""
    name: str = Field(..., min_length=1, description="Column name")
    column_type: ColumnType = Field(ColumnType.ANY, description="Logical column type")

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return v.lower()

    @field_validator("column_type", mode="before")
    @classmethod
    def convert_column_type(cls, v: Any) -> ColumnType:
        """Accept warehouse type names such as 'STRING' or 'DECIMAL(10,2)'."""
        return normalize_column_type(v)

    @classmethod
    def of(cls, value: Union["ColumnSpec", Tuple[str, Any], str]) -> "ColumnSpec":
        """Build a ColumnSpec from a spec, a (name, type) tuple or a bare name."""
        if isinstance(value, ColumnSpec):
            return value
        if isinstance(value, str):
            return cls(name=value)
        name, column_type = value
        return cls(name=name, column_type=column_type)

    def __str__(self) -> str:
        return f"{self.name} {self.column_type.value}"


class RelationShape(BaseQualityModel):
    """Ordered list of columns expected from one input relation."""
    columns: List[ColumnSpec] = Field(default_factory=list)

    @field_validator("columns", mode="before")
    @classmethod
    def convert_columns(cls, v: Any) -> List[ColumnSpec]:
        return [ColumnSpec.of(c) for c in v]

    @model_validator(mode="after")
    def check_unique_names(self) -> "RelationShape":
        names = [c.name for c in self.columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate column names in shape: {duplicates}")
        return self

    @property
    def arity(self) -> int:
        return len(self.columns)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def __str__(self) -> str:
        return f"TABLE({', '.join(str(c) for c in self.columns)})"


InputShape = Union[RelationShape, Sequence[Any]]


def normalize_input_shape(shape: Any) -> List[RelationShape]:
    """
    Normalize the accepted input-shape spellings to a list of relation shapes.

    Accepted forms:
        - a RelationShape
        - a list of RelationShapes (one or two)
        - a list of ColumnSpecs / (name, type) tuples / names (one relation)
    """
    if isinstance(shape, RelationShape):
        return [shape]
    items = list(shape)
    if items and all(isinstance(item, RelationShape) for item in items):
        return items
    if items and all(isinstance(item, (list, tuple)) and item and
                     all(isinstance(c, (ColumnSpec, tuple)) for c in item) for item in items):
        # List of column lists, e.g. [[("policy_id", "VARCHAR")], [("policy_id", "VARCHAR")]]
        return [RelationShape(columns=list(item)) for item in items]
    return [RelationShape(columns=items)]


class MetricDefinition(BaseQualityModel):
    """
    Named, deterministic quality computation.

    ``compute`` is either a sublanguage aggregate from
    :mod:`qualitykit.expressions` or a plain callable taking one list of row
    dicts per input relation and returning a number or None.
    """
    name: str = Field(..., min_length=1, description="Unique metric name")
    inputs: List[RelationShape] = Field(..., min_length=1, max_length=2)
    compute: Any = Field(..., description="Deterministic computation", exclude=True)
    description: str = Field("", max_length=1024)

    @field_validator("compute")
    @classmethod
    def validate_compute(cls, v: Any) -> Any:
        if not callable(v):
            raise ValueError(f"Metric computation must be callable, got {type(v).__name__}")
        return v

    @model_validator(mode="after")
    def validate_references(self) -> "MetricDefinition":
        """Sublanguage aggregates may only read columns declared in the shape."""
        arity = getattr(self.compute, "arity", None)
        if arity is not None and arity != len(self.inputs):
            raise ValueError(
                f"Metric '{self.name}' computation expects {arity} relation(s) "
                f"but declares {len(self.inputs)}"
            )
        referenced = getattr(self.compute, "referenced_columns", None)
        if callable(referenced):
            for index, column in referenced():
                if column not in self.inputs[index].column_names:
                    raise ValueError(
                        f"Metric '{self.name}' references column '{column}' "
                        f"not declared in input relation {index + 1}"
                    )
        return self

    @property
    def is_two_relation(self) -> bool:
        return len(self.inputs) == 2

    @property
    def primary_shape(self) -> RelationShape:
        return self.inputs[0]

    @property
    def secondary_shape(self) -> Optional[RelationShape]:
        return self.inputs[1] if self.is_two_relation else None

    def signature(self) -> str:
        """SQL-like signature, e.g. ``NAME(TABLE(a NUMBER), TABLE(b VARCHAR))``."""
        return f"{self.name}({', '.join(str(s) for s in self.inputs)})"
