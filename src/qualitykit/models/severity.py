"""
Severity rule model.

A severity rule matches metric names by pattern and maps a value crossing its
threshold to a severity. Rules are configuration data and are evaluated on
read; severities are never stored alongside results.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from .base import BaseQualityModel
from .enums import ComparisonOperator, MatchType, Severity


class SeverityRule(BaseQualityModel):
    """
    Metric-name pattern plus threshold comparison yielding a severity.

    Example:
        SeverityRule(pattern="INVALID", match_type=MatchType.CONTAINS,
                     operator=">", threshold=0, severity=Severity.CRITICAL)
    """
    pattern: str = Field(..., min_length=1, description="Metric name or name fragment")
    match_type: MatchType = Field(MatchType.EXACT)
    operator: ComparisonOperator = Field(ComparisonOperator.GT)
    threshold: float = Field(0)
    severity: Severity = Field(Severity.CRITICAL)

    @field_validator("operator", mode="before")
    @classmethod
    def convert_operator(cls, v: Any) -> ComparisonOperator:
        return ComparisonOperator.parse(v)

    @field_validator("match_type", "severity", mode="before")
    @classmethod
    def convert_upper(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v

    def matches_name(self, metric_name: str) -> bool:
        """Case-insensitive pattern match against a metric name."""
        name = metric_name.upper()
        pattern = self.pattern.upper()
        if self.match_type == MatchType.EXACT:
            return name == pattern
        if self.match_type == MatchType.PREFIX:
            return name.startswith(pattern)
        if self.match_type == MatchType.SUFFIX:
            return name.endswith(pattern)
        return pattern in name

    def __str__(self) -> str:
        return (
            f"{self.match_type.value} '{self.pattern}' {self.operator.value} "
            f"{self.threshold:g} -> {self.severity.value}"
        )
