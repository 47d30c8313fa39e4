"""
Schedule models.

A schedule is a tagged variant with three cases:

    IntervalSchedule(minutes)           "<N> MINUTE"
    CronSchedule(expression, timezone)  "USING CRON <expr> <timezone>"
    OnChangeSchedule()                  "TRIGGER_ON_CHANGES"

Time-based schedules compute their fire times with APScheduler triggers; cron
expressions are evaluated in the schedule's own timezone.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import Field, TypeAdapter, field_validator, model_validator
from typing_extensions import Annotated

from .base import BaseQualityModel, ensure_utc

_INTERVAL_PATTERN = re.compile(r"^\s*(\d+)\s+MINUTES?\s*$", re.IGNORECASE)
_CRON_PREFIX = re.compile(r"^\s*USING\s+CRON\s+", re.IGNORECASE)
ON_CHANGE_TEXT = "TRIGGER_ON_CHANGES"

_EPSILON = timedelta(microseconds=1)


class IntervalSchedule(BaseQualityModel):
    """Fire every N minutes, counted from when the schedule was armed."""
    kind: Literal["INTERVAL"] = "INTERVAL"
    minutes: int = Field(..., ge=1, description="Interval length in minutes")

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.minutes)

    def next_fire_after(self, after: datetime, armed_at: datetime) -> datetime:
        """First fire time strictly after ``after`` for a schedule armed at ``armed_at``."""
        armed_at = ensure_utc(armed_at)
        trigger = IntervalTrigger(
            minutes=self.minutes,
            start_date=armed_at + self.interval,
            timezone=timezone.utc,
        )
        return ensure_utc(trigger.get_next_fire_time(None, ensure_utc(after) + _EPSILON))

    def __str__(self) -> str:
        return f"{self.minutes} MINUTE"


class CronSchedule(BaseQualityModel):
    """Fire on a five-field cron expression evaluated in a fixed timezone."""
    kind: Literal["CRON"] = "CRON"
    expression: str = Field(..., min_length=1, description="Five-field cron expression")
    timezone: str = Field("UTC", description="IANA timezone the expression is evaluated in")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}'") from e
        return v

    @field_validator("expression")
    @classmethod
    def validate_expression(cls, v: str) -> str:
        fields = v.split()
        if len(fields) != 5:
            raise ValueError(f"Cron expression must have 5 fields, got {len(fields)}: '{v}'")
        return " ".join(fields)

    @model_validator(mode="after")
    def validate_trigger(self) -> "CronSchedule":
        # Surfaces invalid field values at parse time instead of at the first tick
        self.build_trigger()
        return self

    def build_trigger(self) -> CronTrigger:
        return CronTrigger.from_crontab(self.expression, timezone=ZoneInfo(self.timezone))

    def next_fire_after(self, after: datetime, armed_at: Optional[datetime] = None) -> Optional[datetime]:
        """First fire time strictly after ``after`` (as UTC)."""
        next_time = self.build_trigger().get_next_fire_time(None, ensure_utc(after) + _EPSILON)
        return ensure_utc(next_time) if next_time else None

    def __str__(self) -> str:
        return f"USING CRON {self.expression} {self.timezone}"


class OnChangeSchedule(BaseQualityModel):
    """Fire whenever the entity's data changes."""
    kind: Literal["ON_CHANGE"] = "ON_CHANGE"

    def next_fire_after(self, after: datetime, armed_at: Optional[datetime] = None) -> None:
        return None

    def __str__(self) -> str:
        return ON_CHANGE_TEXT


Schedule = Annotated[
    Union[IntervalSchedule, CronSchedule, OnChangeSchedule],
    Field(discriminator="kind"),
]

_SCHEDULE_ADAPTER = TypeAdapter(Schedule)


def parse_schedule(value: Any) -> Union[IntervalSchedule, CronSchedule, OnChangeSchedule]:
    """
    Parse a schedule from its text form, a dict, or a schedule model.

    Examples:
        parse_schedule("60 MINUTE")
        parse_schedule("USING CRON 0 */4 * * * Europe/Copenhagen")
        parse_schedule("TRIGGER_ON_CHANGES")

    Raises:
        ValueError: If the text does not match any schedule form
    """
    if isinstance(value, (IntervalSchedule, CronSchedule, OnChangeSchedule)):
        return value
    if isinstance(value, dict):
        return _SCHEDULE_ADAPTER.validate_python(value)
    if not isinstance(value, str):
        raise ValueError(f"Cannot parse schedule from {type(value).__name__}")

    text = value.strip()
    if text.upper() == ON_CHANGE_TEXT:
        return OnChangeSchedule()

    match = _INTERVAL_PATTERN.match(text)
    if match:
        return IntervalSchedule(minutes=int(match.group(1)))

    prefix = _CRON_PREFIX.match(text)
    if prefix:
        parts = text[prefix.end():].split()
        if len(parts) == 6:
            return CronSchedule(expression=" ".join(parts[:5]), timezone=parts[5])
        if len(parts) == 5:
            return CronSchedule(expression=" ".join(parts))
        raise ValueError(f"Expected 'USING CRON <5 fields> <timezone>', got '{value}'")

    raise ValueError(
        f"Invalid schedule '{value}'. Expected '<N> MINUTE', "
        f"'USING CRON <expr> <timezone>' or '{ON_CHANGE_TEXT}'"
    )
