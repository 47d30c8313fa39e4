"""
Qualitykit - Rule-based data quality monitoring.

This library measures data quality with named, deterministic metrics bound to
table columns, evaluates them on interval, cron or on-change schedules, keeps
the results as an append-only time series, classifies them by severity and
raises alerts through email or JIRA tickets.

Key Features:
- Deterministic metric sublanguage; wall-clock metrics are rejected at definition time
- Single- and two-relation (referential integrity) metrics
- Schedules as "<N> MINUTE", "USING CRON <expr> <timezone>" or "TRIGGER_ON_CHANGES"
- At most one in-flight evaluation per binding
- Severity rules evaluated on read
- Alert rules with LEVEL or EDGE repeat behaviour
- Entity sources for in-memory data and Databricks SQL warehouses

Quick Start:
    from qualitykit import (
        MonitoringEngine, InMemoryEntitySource, AlertRule,
        col, count_where, percent_where,
    )

    source = InMemoryEntitySource()
    source.create_entity(
        "insurance.raw.claims",
        [("claim_id", "VARCHAR"), ("claim_amount", "NUMBER"),
         ("policy_coverage_limit", "NUMBER"), ("fraud_flag", "BOOLEAN")],
        rows,
    )

    engine = MonitoringEngine(source)
    engine.registry.define(
        "CLAIMS_EXCEEDING_COVERAGE",
        [("claim_amount", "NUMBER"), ("policy_coverage_limit", "NUMBER")],
        count_where(col("claim_amount") > col("policy_coverage_limit")),
    )
    engine.bindings.bind("insurance.raw.claims", ["claim_amount", "policy_coverage_limit"],
                         "CLAIMS_EXCEEDING_COVERAGE")
    engine.bindings.bind("insurance.raw.claims", ["claim_id"], "DUPLICATE_COUNT")
    engine.scheduler.set_schedule("insurance.raw.claims", "60 MINUTE")

    engine.alerts.create_rule(AlertRule(
        name="duplicate_claims_alert",
        metric_name="DUPLICATE_COUNT",
        entity="insurance.raw.claims",
    ))
    engine.alerts.resume("duplicate_claims_alert")

    engine.start()
"""

__version__ = "0.1.0"

# =============================================================================
# Errors
# =============================================================================

from qualitykit.errors import (
    ComputeError,
    DataUnavailableError,
    DispatchError,
    EvaluationCancelled,
    NonDeterministicMetricError,
    NotFoundError,
    QualityKitError,
    ShapeMismatchError,
)

# =============================================================================
# Models
# =============================================================================

from qualitykit.models import (
    AlertFiring,
    AlertRule,
    AlertState,
    ChannelType,
    ColumnSpec,
    ColumnType,
    ComparisonOperator,
    CronSchedule,
    EvaluationStatus,
    IntervalSchedule,
    IssueType,
    MatchType,
    MetricBinding,
    MetricDefinition,
    MetricResult,
    NotificationTemplate,
    OnChangeSchedule,
    Priority,
    RelationShape,
    Schedule,
    ScheduleState,
    Severity,
    SeverityRule,
    ThresholdPredicate,
    TriggerMode,
    parse_schedule,
)

# =============================================================================
# Computation Sublanguage
# =============================================================================

from qualitykit.expressions import (
    coalesce,
    col,
    count_where,
    current_timestamp,
    duplicate_count,
    lit,
    null_count,
    orphan_count,
    percent_where,
    row_count,
    unique_count,
)

# =============================================================================
# Components
# =============================================================================

from qualitykit.alerting import AlertCheck, AlertRuleEngine
from qualitykit.bindings import BindingStore
from qualitykit.config import JiraSettings, MonitoringConfig, SmtpSettings
from qualitykit.dashboard import DashboardRow, IssueRow, issue_summary, quality_dashboard
from qualitykit.determinism import ensure_deterministic, find_nondeterministic_references
from qualitykit.engine import MonitoringEngine, TickReport
from qualitykit.evaluator import Evaluator
from qualitykit.manifest import MonitoringManifest, load_manifest
from qualitykit.notifications import (
    DeliveryReceipt,
    EmailChannel,
    JiraTicketChannel,
    NotificationChannel,
    NotificationDispatcher,
    TicketRequest,
)
from qualitykit.registry import MetricRegistry, register_system_metrics
from qualitykit.result_store import ResultStore
from qualitykit.scheduler import EvaluationOutcome, Scheduler
from qualitykit.severity import DEFAULT_SEVERITY_RULES, SeverityClassifier
from qualitykit.sources import EntitySource, InMemoryEntitySource, WarehouseEntitySource

__all__ = [
    # Version
    "__version__",
    # Errors
    "QualityKitError",
    "NotFoundError",
    "ShapeMismatchError",
    "NonDeterministicMetricError",
    "ComputeError",
    "DataUnavailableError",
    "DispatchError",
    "EvaluationCancelled",
    # Models
    "AlertFiring",
    "AlertRule",
    "AlertState",
    "ChannelType",
    "ColumnSpec",
    "ColumnType",
    "ComparisonOperator",
    "CronSchedule",
    "EvaluationStatus",
    "IntervalSchedule",
    "IssueType",
    "MatchType",
    "MetricBinding",
    "MetricDefinition",
    "MetricResult",
    "NotificationTemplate",
    "OnChangeSchedule",
    "Priority",
    "RelationShape",
    "Schedule",
    "ScheduleState",
    "Severity",
    "SeverityRule",
    "ThresholdPredicate",
    "TriggerMode",
    "parse_schedule",
    # Sublanguage
    "col",
    "lit",
    "coalesce",
    "current_timestamp",
    "row_count",
    "count_where",
    "percent_where",
    "null_count",
    "duplicate_count",
    "unique_count",
    "orphan_count",
    # Components
    "MetricRegistry",
    "register_system_metrics",
    "ensure_deterministic",
    "find_nondeterministic_references",
    "EntitySource",
    "InMemoryEntitySource",
    "WarehouseEntitySource",
    "BindingStore",
    "Evaluator",
    "ResultStore",
    "Scheduler",
    "EvaluationOutcome",
    "SeverityClassifier",
    "DEFAULT_SEVERITY_RULES",
    "DashboardRow",
    "IssueRow",
    "quality_dashboard",
    "issue_summary",
    "AlertRuleEngine",
    "AlertCheck",
    "NotificationDispatcher",
    "NotificationChannel",
    "DeliveryReceipt",
    "TicketRequest",
    "EmailChannel",
    "JiraTicketChannel",
    # Configuration
    "MonitoringConfig",
    "JiraSettings",
    "SmtpSettings",
    "MonitoringManifest",
    "load_manifest",
    # Engine
    "MonitoringEngine",
    "TickReport",
]
