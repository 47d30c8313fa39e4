"""
Metric binding model.

A binding attaches a metric definition to concrete columns of an entity (and,
for two-relation metrics, to columns of a second reference entity). Bindings
are identified by their full association, so binding the same tuple twice
yields the same identifier.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field, computed_field, field_validator, model_validator

from .base import BaseQualityModel


class MetricBinding(BaseQualityModel):
    """Association of a metric definition to an entity's columns."""
    entity: str = Field(..., min_length=1, description="Target entity identifier")
    columns: List[str] = Field(default_factory=list, description="Target columns, in shape order")
    metric_name: str = Field(..., min_length=1)
    second_entity: Optional[str] = Field(None, description="Reference entity for two-relation metrics")
    second_columns: List[str] = Field(default_factory=list)

    @field_validator("columns", "second_columns")
    @classmethod
    def normalize_columns(cls, v: List[str]) -> List[str]:
        return [c.strip().lower() for c in v]

    @model_validator(mode="after")
    def check_second_relation(self) -> "MetricBinding":
        if self.second_columns and not self.second_entity:
            raise ValueError("second_columns given without a second_entity")
        return self

    @computed_field
    @property
    def binding_id(self) -> str:
        """Stable identifier derived from the full association."""
        target = f"{self.metric_name}@{self.entity}({','.join(self.columns)})"
        if self.second_entity:
            target += f"->{self.second_entity}({','.join(self.second_columns)})"
        return target

    @property
    def entities(self) -> List[str]:
        """All entities read by this binding."""
        return [self.entity] + ([self.second_entity] if self.second_entity else [])

    def __str__(self) -> str:
        return self.binding_id
