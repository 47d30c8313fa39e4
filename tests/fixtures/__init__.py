"""Test fixtures for qualitykit."""

from .model_factories import (
    CLAIMS_COLUMNS,
    CLAIMS_ENTITY,
    FIXED_NOW,
    POLICIES_COLUMNS,
    POLICIES_ENTITY,
    MutableClock,
    RecordingChannel,
    make_alert_rule,
    make_binding,
    make_claim_rows,
    make_policy_rows,
    make_result,
    make_severity_rule,
    register_claims_metrics,
)

__all__ = [
    "FIXED_NOW",
    "CLAIMS_ENTITY",
    "CLAIMS_COLUMNS",
    "POLICIES_ENTITY",
    "POLICIES_COLUMNS",
    "MutableClock",
    "RecordingChannel",
    "make_claim_rows",
    "make_policy_rows",
    "make_binding",
    "make_result",
    "make_alert_rule",
    "make_severity_rule",
    "register_claims_metrics",
]
