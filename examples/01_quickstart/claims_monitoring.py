"""
Claims Monitoring Quickstart

Monitors an in-memory insurance claims table with four quality metrics,
runs them hourly and raises a (demo-mode) JIRA ticket when duplicate claim
ids show up. The engine is ticked by hand with a simulated clock so the
whole run finishes instantly.
"""

import logging
from datetime import date, datetime, timedelta, timezone

from qualitykit import (
    AlertRule,
    JiraSettings,
    JiraTicketChannel,
    MonitoringEngine,
    NotificationDispatcher,
    NotificationTemplate,
    InMemoryEntitySource,
    ThresholdPredicate,
    col,
    count_where,
    percent_where,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

CLAIMS = "insurance.raw.claims"


class SimulatedClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


def claim(claim_id, amount, limit=50000, fraud=False, incident=date(2025, 1, 1), reported=date(2025, 1, 3)):
    return {
        "claim_id": claim_id,
        "claim_amount": amount,
        "policy_coverage_limit": limit,
        "fraud_flag": fraud,
        "date_of_incident": incident,
        "date_reported": reported,
    }


# Sample data: one claim over its limit, one reported before the incident,
# one fraud flag and a duplicated claim id
source = InMemoryEntitySource()
source.create_entity(
    CLAIMS,
    [("claim_id", "VARCHAR"), ("claim_amount", "NUMBER"), ("policy_coverage_limit", "NUMBER"),
     ("fraud_flag", "BOOLEAN"), ("date_of_incident", "DATE"), ("date_reported", "DATE")],
    [
        claim("CLM-0001", 12000),
        claim("CLM-0002", 61000),
        claim("CLM-0003", 8000, reported=date(2024, 12, 30)),
        claim("CLM-0004", 23000, fraud=True),
        claim("CLM-0004", 23000),
    ],
)

# JIRA tickets are simulated unless JIRA_DEMO_MODE=false and credentials are set
dispatcher = NotificationDispatcher()
dispatcher.register(JiraTicketChannel(JiraSettings.from_env()))

clock = SimulatedClock(datetime(2025, 1, 12, 9, 0, tzinfo=timezone.utc))
engine = MonitoringEngine(source, dispatcher=dispatcher, clock=clock)

# Custom metrics; ROW_COUNT, NULL_COUNT and DUPLICATE_COUNT are built in
engine.registry.define(
    "CLAIMS_EXCEEDING_COVERAGE",
    [("claim_amount", "NUMBER"), ("policy_coverage_limit", "NUMBER")],
    count_where(col("claim_amount") > col("policy_coverage_limit")),
    "Claims where the amount exceeds the policy coverage limit",
)
engine.registry.define(
    "INVALID_DATE_SEQUENCE",
    [("date_of_incident", "DATE"), ("date_reported", "DATE")],
    count_where(col("date_reported") < col("date_of_incident")),
    "Claims reported before the incident happened",
)
engine.registry.define(
    "FRAUD_FLAG_RATE",
    [("fraud_flag", "BOOLEAN")],
    percent_where(col("fraud_flag").eq(True)),
    "Percentage of claims flagged for fraud",
)

engine.bindings.bind(CLAIMS, ["claim_amount", "policy_coverage_limit"], "CLAIMS_EXCEEDING_COVERAGE")
engine.bindings.bind(CLAIMS, ["date_of_incident", "date_reported"], "INVALID_DATE_SEQUENCE")
engine.bindings.bind(CLAIMS, ["fraud_flag"], "FRAUD_FLAG_RATE")
engine.bindings.bind(CLAIMS, ["claim_id"], "DUPLICATE_COUNT")
engine.scheduler.set_schedule(CLAIMS, "60 MINUTE")

# Alert rules start suspended and have to be resumed explicitly
engine.alerts.create_rule(AlertRule(
    name="duplicate_claims_alert",
    metric_name="DUPLICATE_COUNT",
    entity=CLAIMS,
    predicate=ThresholdPredicate(operator=">", threshold=0),
    schedule="60 MINUTE",
    template=NotificationTemplate(
        channel="TICKET",
        recipient="DQ",
        subject="Duplicate claims detected in {entity}",
        priority="High",
        labels=["data-quality", "duplicates"],
    ),
))
engine.alerts.resume("duplicate_claims_alert")

# Three simulated hours
for hour in range(3):
    clock.now += timedelta(hours=1)
    print(engine.tick())
    print()

print("Quality dashboard:")
for row in engine.dashboard(limit=8):
    print(f"  {row}")

print("\nOpen issues:")
for issue in engine.issues():
    print(f"  {issue.severity.value:<8} {issue.metric_name}={issue.latest_value} on {issue.entity}")

print("\nTickets:")
for firing in engine.alerts.firings("duplicate_claims_alert"):
    print(f"  {firing.fired_at.isoformat()} {firing.ticket_key}")

engine.shutdown()
