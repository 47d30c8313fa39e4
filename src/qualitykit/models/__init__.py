"""
Data quality monitoring models.

Pydantic models for metric definitions, bindings, schedules, results,
severity rules and alert rules.
"""

from .alerts import (
    DEFAULT_WINDOW_MINUTES,
    AlertRule,
    NotificationTemplate,
    ThresholdPredicate,
)
from .base import BaseQualityModel, Clock, ensure_utc, split_name, utc_now
from .bindings import MetricBinding
from .enums import (
    AlertState,
    ChannelType,
    ColumnType,
    ComparisonOperator,
    EvaluationStatus,
    IssueType,
    MatchType,
    Priority,
    ScheduleState,
    Severity,
    TriggerMode,
    normalize_column_type,
)
from .metrics import ColumnSpec, InputShape, MetricDefinition, RelationShape, normalize_input_shape
from .results import AlertFiring, MetricResult
from .schedules import (
    ON_CHANGE_TEXT,
    CronSchedule,
    IntervalSchedule,
    OnChangeSchedule,
    Schedule,
    parse_schedule,
)
from .severity import SeverityRule

__all__ = [
    # Base
    "BaseQualityModel",
    "Clock",
    "utc_now",
    "ensure_utc",
    "split_name",
    # Enums
    "AlertState",
    "ChannelType",
    "ColumnType",
    "ComparisonOperator",
    "EvaluationStatus",
    "IssueType",
    "MatchType",
    "Priority",
    "ScheduleState",
    "Severity",
    "TriggerMode",
    "normalize_column_type",
    # Metrics
    "ColumnSpec",
    "RelationShape",
    "InputShape",
    "MetricDefinition",
    "normalize_input_shape",
    "MetricBinding",
    # Schedules
    "Schedule",
    "IntervalSchedule",
    "CronSchedule",
    "OnChangeSchedule",
    "ON_CHANGE_TEXT",
    "parse_schedule",
    # Results
    "MetricResult",
    "AlertFiring",
    # Rules
    "SeverityRule",
    "ThresholdPredicate",
    "NotificationTemplate",
    "AlertRule",
    "DEFAULT_WINDOW_MINUTES",
]
