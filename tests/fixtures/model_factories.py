"""
Factory functions for creating test data and models.

These factories create qualitykit models and sample insurance data with
sensible defaults for testing. All factories accept overrides.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from qualitykit.errors import DispatchError
from qualitykit.expressions import col, count_where, orphan_count, percent_where
from qualitykit.models import (
    AlertRule,
    AlertState,
    ChannelType,
    MetricBinding,
    MetricResult,
    NotificationTemplate,
    SeverityRule,
    ThresholdPredicate,
    TriggerMode,
)
from qualitykit.notifications import DeliveryReceipt, NotificationChannel
from qualitykit.registry import MetricRegistry

FIXED_NOW = datetime(2025, 1, 12, 10, 0, tzinfo=timezone.utc)

CLAIMS_ENTITY = "insurance.raw.claims"
POLICIES_ENTITY = "insurance.raw.policies"

CLAIMS_COLUMNS = [
    ("claim_id", "VARCHAR"),
    ("policy_id", "VARCHAR"),
    ("claim_amount", "NUMBER"),
    ("policy_coverage_limit", "NUMBER"),
    ("fraud_flag", "BOOLEAN"),
    ("date_of_incident", "DATE"),
    ("date_reported", "DATE"),
    ("policy_holder_email", "VARCHAR"),
]

POLICIES_COLUMNS = [
    ("policy_id", "VARCHAR"),
    ("coverage_limit", "NUMBER"),
]


class MutableClock:
    """Test clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)
        return self.now


def make_claim_rows(
    total: int = 20,
    exceeding: int = 5,
    fraud: int = 5,
    duplicate_ids: int = 0,
    policy_ids: Optional[List[str]] = None
) -> List[Dict[str, Any]]:
    """
    Create claim rows.

    The first ``exceeding`` rows claim more than their coverage limit, the
    last ``fraud`` rows are flagged for fraud, and the last ``duplicate_ids``
    rows reuse the claim id of the first row.
    """
    rows = []
    for i in range(total):
        limit = 50000
        rows.append({
            "claim_id": f"CLM-{i:04d}",
            "policy_id": policy_ids[i % len(policy_ids)] if policy_ids else f"POL-{i % 5:03d}",
            "claim_amount": limit + 1000 if i < exceeding else 10000 + i,
            "policy_coverage_limit": limit,
            "fraud_flag": i >= total - fraud,
            "date_of_incident": date(2025, 1, 1),
            "date_reported": date(2025, 1, 3),
            "policy_holder_email": f"holder{i}@example.dk",
        })
    for row in rows[total - duplicate_ids:] if duplicate_ids else []:
        row["claim_id"] = rows[0]["claim_id"]
    return rows


def make_policy_rows(count: int = 5) -> List[Dict[str, Any]]:
    """Create policies POL-000 .. POL-{count-1}."""
    return [{"policy_id": f"POL-{i:03d}", "coverage_limit": 50000} for i in range(count)]


def make_binding(
    entity: str = CLAIMS_ENTITY,
    columns: Optional[List[str]] = None,
    metric_name: str = "DUPLICATE_COUNT",
    **overrides: Any
) -> MetricBinding:
    """Create a MetricBinding for testing."""
    return MetricBinding(
        entity=entity,
        columns=columns if columns is not None else ["claim_id"],
        metric_name=metric_name,
        **overrides,
    )


def make_result(
    value: Optional[float] = 3,
    metric_name: str = "DUPLICATE_COUNT",
    entity: str = CLAIMS_ENTITY,
    measured_at: Optional[datetime] = None,
    binding_id: Optional[str] = None,
    columns: Optional[List[str]] = None
) -> MetricResult:
    """Create a MetricResult for testing."""
    columns = columns if columns is not None else ["claim_id"]
    return MetricResult(
        binding_id=binding_id or f"{metric_name}@{entity}({','.join(columns)})",
        metric_name=metric_name,
        entity=entity,
        columns=columns,
        value=value,
        measured_at=measured_at or FIXED_NOW,
    )


def make_alert_rule(
    name: str = "duplicate_claims_alert",
    metric_name: str = "DUPLICATE_COUNT",
    entity: str = CLAIMS_ENTITY,
    operator: str = ">",
    threshold: float = 0,
    state: AlertState = AlertState.ACTIVE,
    trigger_mode: TriggerMode = TriggerMode.LEVEL,
    channel: ChannelType = ChannelType.EMAIL,
    recipient: str = "data-quality@insuranceco.dk",
    schedule: str = "60 MINUTE",
    **overrides: Any
) -> AlertRule:
    """Create an AlertRule for testing. Rules are ACTIVE unless stated otherwise."""
    return AlertRule(
        name=name,
        metric_name=metric_name,
        entity=entity,
        predicate=ThresholdPredicate(operator=operator, threshold=threshold),
        state=state,
        trigger_mode=trigger_mode,
        schedule=schedule,
        template=NotificationTemplate(channel=channel, recipient=recipient),
        **overrides,
    )


def make_severity_rule(
    pattern: str = "INVALID",
    match_type: str = "CONTAINS",
    operator: str = ">",
    threshold: float = 0,
    severity: str = "CRITICAL"
) -> SeverityRule:
    """Create a SeverityRule for testing."""
    return SeverityRule(
        pattern=pattern,
        match_type=match_type,
        operator=operator,
        threshold=threshold,
        severity=severity,
    )


class RecordingChannel(NotificationChannel):
    """Channel that records every message instead of delivering it."""

    def __init__(self, channel_type: ChannelType = ChannelType.EMAIL, fail: bool = False):
        self.channel_type = channel_type
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    def send(self, recipient: str, subject: str, body: str, **fields: Any) -> DeliveryReceipt:
        if self.fail:
            raise DispatchError(self.channel_type.value, "simulated outage")
        self.sent.append({"recipient": recipient, "subject": subject, "body": body, **fields})
        ticket_key = f"DQ-{len(self.sent)}" if self.channel_type == ChannelType.TICKET else None
        return DeliveryReceipt(
            channel=self.channel_type,
            recipient=recipient,
            ticket_key=ticket_key,
            status="To Do" if ticket_key else "sent",
        )


def register_claims_metrics(registry: MetricRegistry) -> MetricRegistry:
    """Define the insurance claims quality metrics used across the tests."""
    registry.define(
        "CLAIMS_EXCEEDING_COVERAGE",
        [("claim_amount", "NUMBER"), ("policy_coverage_limit", "NUMBER")],
        count_where(col("claim_amount") > col("policy_coverage_limit")),
        "Claims where the amount exceeds the policy coverage limit",
    )
    registry.define(
        "FRAUD_FLAG_RATE",
        [("fraud_flag", "BOOLEAN")],
        percent_where(col("fraud_flag").eq(True)),
        "Percentage of claims flagged for fraud",
    )
    registry.define(
        "INVALID_DATE_SEQUENCE",
        [("date_of_incident", "DATE"), ("date_reported", "DATE")],
        count_where(col("date_reported") < col("date_of_incident")),
        "Claims reported before the incident happened",
    )
    registry.define(
        "ORPHAN_CLAIMS",
        [[("policy_id", "VARCHAR")], [("policy_id", "VARCHAR")]],
        orphan_count("policy_id"),
        "Claims referencing a policy that does not exist",
    )
    return registry
