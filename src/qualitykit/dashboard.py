"""
Quality dashboard views.

Read-only projections over the result store with severity and descriptions
attached at read time.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from qualitykit.models import Severity
from qualitykit.result_store import ResultStore
from qualitykit.severity import SeverityClassifier


@dataclass(frozen=True)
class DashboardRow:
    """One measurement with its derived severity."""

    measured_at: datetime
    entity: str
    metric_name: str
    value: Optional[float]
    severity: Severity
    description: str

    def __str__(self) -> str:
        return (
            f"{self.measured_at.isoformat()} {self.severity.value:<8} {self.entity} "
            f"{self.metric_name}={self.value} ({self.description})"
        )


@dataclass(frozen=True)
class IssueRow:
    """Latest non-zero value of a metric on an entity."""

    entity: str
    metric_name: str
    latest_value: float
    last_checked: datetime
    severity: Severity


def _matches_prefix(entity: str, entity_prefix: Optional[str]) -> bool:
    return entity_prefix is None or entity.startswith(entity_prefix)


def quality_dashboard(
    store: ResultStore,
    classifier: SeverityClassifier,
    entity_prefix: Optional[str] = None,
    limit: Optional[int] = None
) -> List[DashboardRow]:
    """
    All measurements, newest first, with severity and description.

    Args:
        store: Result store to read
        classifier: Severity rules and metric descriptions
        entity_prefix: Only include entities starting with this prefix (e.g. "insurance.curated.")
        limit: Maximum number of rows
    """
    results = [r for r in store.all_results() if _matches_prefix(r.entity, entity_prefix)]
    results.sort(key=lambda r: (r.measured_at, r.sequence), reverse=True)
    if limit is not None:
        results = results[:limit]
    return [
        DashboardRow(
            measured_at=r.measured_at,
            entity=r.entity,
            metric_name=r.metric_name,
            value=r.value,
            severity=classifier.classify(r),
            description=classifier.describe(r.metric_name),
        )
        for r in results
    ]


def issue_summary(
    store: ResultStore,
    classifier: SeverityClassifier,
    entity_prefix: Optional[str] = None
) -> List[IssueRow]:
    """
    Open issues: the latest value per (entity, metric) where it is above zero.

    Ordered most severe first, then by entity and metric name.
    """
    rows = [
        IssueRow(
            entity=r.entity,
            metric_name=r.metric_name,
            latest_value=r.value,
            last_checked=r.measured_at,
            severity=classifier.classify(r),
        )
        for r in store.latest_per_metric()
        if r.value is not None and r.value > 0 and _matches_prefix(r.entity, entity_prefix)
    ]
    return sorted(rows, key=lambda row: (-row.severity.rank, row.entity, row.metric_name))
