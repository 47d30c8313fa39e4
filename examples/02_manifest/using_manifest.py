"""
Example: Using a YAML manifest for monitoring configuration.

Bindings, schedules, severity rules and alert rules live in
monitoring.yml next to this file; only the custom metric definitions are
written in Python. The claims table is evaluated whenever it is written.
"""

import logging
from datetime import date
from pathlib import Path

from qualitykit import (
    InMemoryEntitySource,
    JiraSettings,
    JiraTicketChannel,
    MonitoringEngine,
    NotificationDispatcher,
    col,
    count_where,
    load_manifest,
    orphan_count,
)

logging.basicConfig(level=logging.INFO)

source = InMemoryEntitySource()
source.create_entity(
    "insurance.raw.policies",
    [("policy_id", "VARCHAR"), ("coverage_limit", "NUMBER")],
    [{"policy_id": "POL-001", "coverage_limit": 50000}],
)
source.create_entity(
    "insurance.raw.claims",
    [("claim_id", "VARCHAR"), ("policy_id", "VARCHAR"),
     ("date_of_incident", "DATE"), ("date_reported", "DATE")],
)

dispatcher = NotificationDispatcher()
dispatcher.register(JiraTicketChannel(JiraSettings.from_env()))
engine = MonitoringEngine(source, dispatcher=dispatcher)

engine.registry.define(
    "INVALID_DATE_SEQUENCE",
    [("date_of_incident", "DATE"), ("date_reported", "DATE")],
    count_where(col("date_reported") < col("date_of_incident")),
    "Claims reported before the incident happened",
)
engine.registry.define(
    "ORPHAN_CLAIMS",
    [[("policy_id", "VARCHAR")], [("policy_id", "VARCHAR")]],
    orphan_count("policy_id"),
    "Claims referencing a policy that does not exist",
)

# Load and apply the manifest
manifest = load_manifest(Path(__file__).parent / "monitoring.yml")
print(f"Applied: {manifest.apply_to(engine)}")

# A load with a bad date and an unknown policy
source.write("insurance.raw.claims", [
    {"claim_id": "CLM-1", "policy_id": "POL-001",
     "date_of_incident": date(2025, 1, 1), "date_reported": date(2025, 1, 2)},
    {"claim_id": "CLM-2", "policy_id": "POL-404",
     "date_of_incident": date(2025, 1, 5), "date_reported": date(2025, 1, 4)},
])

report = engine.tick()
print(report)

# Alert rules run on their own schedule; check this one right away
print(engine.alerts.check_rule("invalid_dates_alert"))

print("\nIssues:")
for issue in engine.issues():
    print(f"  {issue.severity.value:<8} {issue.metric_name}={issue.latest_value}")

engine.shutdown()
