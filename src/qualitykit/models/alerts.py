"""
Alert rule models.

An alert rule is a standing condition over stored results: "is there a result
for this metric on this entity within the trailing window whose value
satisfies the threshold?". When it holds for an active rule, the notification
template is rendered and sent.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import Field, field_validator

from .base import BaseQualityModel
from .enums import AlertState, ChannelType, ComparisonOperator, IssueType, Priority, TriggerMode
from .schedules import CronSchedule, IntervalSchedule, OnChangeSchedule, parse_schedule

DEFAULT_WINDOW_MINUTES = 65

DEFAULT_SUBJECT = "{severity}: {metric_name} on {entity}"
DEFAULT_BODY = (
    "Alert '{rule_name}': metric {metric_name} measured {value} on {entity} "
    "at {measured_at} (threshold {operator} {threshold}, severity {severity}). "
    "Please investigate."
)


class ThresholdPredicate(BaseQualityModel):
    """Threshold comparison applied to a result value."""
    operator: ComparisonOperator = Field(ComparisonOperator.GT)
    threshold: float = Field(0)

    @field_validator("operator", mode="before")
    @classmethod
    def convert_operator(cls, v: Any) -> ComparisonOperator:
        return ComparisonOperator.parse(v)

    def holds(self, value: Optional[float]) -> bool:
        return self.operator.compare(value, self.threshold)

    def __str__(self) -> str:
        return f"value {self.operator.value} {self.threshold:g}"


class _SafeFormat(dict):
    """Leaves unknown placeholders in place instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class NotificationTemplate(BaseQualityModel):
    """
    Where and how an alert is delivered.

    Subject and body accept the placeholders ``{rule_name}``, ``{metric_name}``,
    ``{value}``, ``{threshold}``, ``{operator}``, ``{entity}``, ``{severity}``
    and ``{measured_at}``.
    """
    channel: ChannelType = Field(ChannelType.EMAIL)
    recipient: str = Field("", description="Email address or ticket project key")
    subject: str = Field(DEFAULT_SUBJECT)
    body: str = Field(DEFAULT_BODY)
    issue_type: IssueType = Field(IssueType.BUG)
    priority: Priority = Field(Priority.MEDIUM)
    assignee: Optional[str] = None
    labels: List[str] = Field(default_factory=lambda: ["data-quality", "automated"])

    @field_validator("channel", mode="before")
    @classmethod
    def convert_channel(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("issue_type", "priority", mode="before")
    @classmethod
    def convert_title_case(cls, v: Any) -> Any:
        return v.title() if isinstance(v, str) else v

    def render(self, context: Dict[str, Any]) -> Dict[str, str]:
        """Render subject and body with the given context."""
        values = _SafeFormat(context)
        return {
            "subject": self.subject.format_map(values),
            "body": self.body.format_map(values),
        }

    def ticket_fields(self) -> Dict[str, Any]:
        """Extra fields passed to the ticket channel."""
        if self.channel != ChannelType.TICKET:
            return {}
        return {
            "issue_type": self.issue_type,
            "priority": self.priority,
            "assignee": self.assignee,
            "labels": list(self.labels),
        }


class AlertRule(BaseQualityModel):
    """Standing threshold condition over recent results of one metric on one entity."""
    name: str = Field(..., min_length=1, description="Unique rule name")
    metric_name: str = Field(..., min_length=1)
    entity: str = Field(..., min_length=1)
    predicate: ThresholdPredicate = Field(default_factory=ThresholdPredicate)
    window_minutes: int = Field(DEFAULT_WINDOW_MINUTES, ge=1, description="Trailing window for recent results")
    schedule: Union[IntervalSchedule, CronSchedule] = Field(
        default_factory=lambda: IntervalSchedule(minutes=60)
    )
    state: AlertState = Field(AlertState.SUSPENDED, description="New rules start suspended")
    trigger_mode: TriggerMode = Field(TriggerMode.LEVEL)
    template: NotificationTemplate = Field(default_factory=NotificationTemplate)
    comment: Optional[str] = Field(None, max_length=1024)

    @field_validator("schedule", mode="before")
    @classmethod
    def convert_schedule(cls, v: Any) -> Any:
        schedule = parse_schedule(v)
        if isinstance(schedule, OnChangeSchedule):
            raise ValueError("Alert rules require an interval or cron schedule")
        return schedule

    @field_validator("state", "trigger_mode", mode="before")
    @classmethod
    def convert_upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @property
    def is_active(self) -> bool:
        return self.state == AlertState.ACTIVE
