"""
Result models: metric measurements and alert firings.

Both are append-only records; the engine never updates or deletes them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator

from .base import BaseQualityModel, ensure_utc
from .enums import Severity


class MetricResult(BaseQualityModel):
    """One timestamped measurement of a binding."""

    model_config = ConfigDict(frozen=True)

    binding_id: str
    metric_name: str
    entity: str
    columns: List[str] = Field(default_factory=list)
    value: Optional[float] = Field(None, description="Measured value; None for a NULL result")
    measured_at: datetime = Field(..., description="Evaluation start time (UTC)")
    sequence: int = Field(0, description="Store-assigned append sequence number")

    @field_validator("measured_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class AlertFiring(BaseQualityModel):
    """Audit record of a delivered alert notification."""

    model_config = ConfigDict(frozen=True)

    rule_name: str
    fired_at: datetime
    metric_name: str
    entity: str
    value: Optional[float]
    threshold: float
    severity: Severity
    measured_at: datetime
    ticket_key: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("fired_at", "measured_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)
