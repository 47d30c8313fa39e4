"""
Append-only result store.

An in-memory time series of metric results. Results are never updated or
deleted. A latest-value index per binding and per (entity, metric) is kept
consistent with every append, so dashboard and alert lookups do not scan the
series.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from qualitykit.models import MetricResult, ensure_utc

logger = logging.getLogger(__name__)


class ResultStore:
    """Thread-safe append-only store of MetricResults."""

    def __init__(self):
        self._results: List[MetricResult] = []
        self._latest_by_binding: Dict[str, MetricResult] = {}
        self._latest_by_metric: Dict[Tuple[str, str], MetricResult] = {}
        self._lock = threading.Lock()

    def append(self, result: MetricResult) -> MetricResult:
        """
        Append a result and return the stored copy with its sequence number.

        Raises:
            ValueError: If the result is older than the binding's latest result
        """
        with self._lock:
            previous = self._latest_by_binding.get(result.binding_id)
            if previous is not None and result.measured_at < previous.measured_at:
                raise ValueError(
                    f"Result for {result.binding_id} at {result.measured_at.isoformat()} "
                    f"is older than the latest at {previous.measured_at.isoformat()}"
                )
            stored = result.model_copy(update={"sequence": len(self._results) + 1})
            self._results.append(stored)
            self._latest_by_binding[stored.binding_id] = stored
            key = (stored.entity, stored.metric_name)
            current = self._latest_by_metric.get(key)
            if current is None or stored.measured_at >= current.measured_at:
                self._latest_by_metric[key] = stored

        logger.debug(f"Stored {stored.metric_name}={stored.value} for {stored.binding_id}")
        return stored

    def latest(self, binding_id: str) -> Optional[MetricResult]:
        with self._lock:
            return self._latest_by_binding.get(binding_id)

    def latest_for(self, entity: str, metric_name: str) -> Optional[MetricResult]:
        """Latest result of a metric on an entity, across all its bindings."""
        with self._lock:
            return self._latest_by_metric.get((entity, metric_name))

    def latest_per_metric(self, entity: Optional[str] = None) -> List[MetricResult]:
        """Latest result per (entity, metric), ordered by entity then metric name."""
        with self._lock:
            items = [
                result for (ent, _), result in self._latest_by_metric.items()
                if entity is None or ent == entity
            ]
        return sorted(items, key=lambda r: (r.entity, r.metric_name))

    def query(
        self,
        entity: str,
        metric_name: Optional[str] = None,
        since: Optional[datetime] = None
    ) -> List[MetricResult]:
        """
        Results for an entity ordered by measurement time ascending.

        Args:
            entity: Target entity
            metric_name: Optional metric filter
            since: Optional inclusive lower bound on measurement time
        """
        since_utc = ensure_utc(since) if since is not None else None
        with self._lock:
            matched = [
                r for r in self._results
                if r.entity == entity
                and (metric_name is None or r.metric_name == metric_name)
                and (since_utc is None or r.measured_at >= since_utc)
            ]
        return sorted(matched, key=lambda r: (r.measured_at, r.sequence))

    def all_results(self) -> List[MetricResult]:
        with self._lock:
            return list(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
