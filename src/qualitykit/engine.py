"""
Monitoring engine.

Wires the registry, binding store, evaluator, scheduler, result store,
severity classifier and alert engine together around one entity source. All
collaborators are explicit objects owned by the engine; there is no global
state, so several engines can run side by side.

``tick()`` runs one pass synchronously (scheduler first, then alert rules)
and is what tests and notebooks call. ``start()`` drives the same pass from a
background APScheduler heartbeat.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from qualitykit.alerting import AlertCheck, AlertRuleEngine
from qualitykit.bindings import BindingStore
from qualitykit.config import MonitoringConfig
from qualitykit.dashboard import DashboardRow, IssueRow, issue_summary, quality_dashboard
from qualitykit.evaluator import Evaluator
from qualitykit.models import Clock, ensure_utc, utc_now
from qualitykit.notifications import NotificationDispatcher
from qualitykit.registry import MetricRegistry, register_system_metrics
from qualitykit.result_store import ResultStore
from qualitykit.scheduler import EvaluationOutcome, Scheduler, get_summary
from qualitykit.severity import SeverityClassifier
from qualitykit.sources import EntitySource

logger = logging.getLogger(__name__)

HEARTBEAT_JOB_ID = "qualitykit-heartbeat"


@dataclass
class TickReport:
    """Everything one engine pass did."""

    ticked_at: datetime
    evaluations: List[EvaluationOutcome] = field(default_factory=list)
    alerts: List[AlertCheck] = field(default_factory=list)

    @property
    def notifications_sent(self) -> int:
        return sum(1 for check in self.alerts if check.notified)

    def __str__(self) -> str:
        lines = [f"Tick at {self.ticked_at.isoformat()}", get_summary(self.evaluations)]
        if self.alerts:
            lines.append(f"Alert checks: {len(self.alerts)} ({self.notifications_sent} notified)")
            lines.extend(f"  {check}" for check in self.alerts)
        return "\n".join(lines)


class MonitoringEngine:
    """
    Data quality monitoring engine.

    Example:
        source = InMemoryEntitySource()
        engine = MonitoringEngine(source)
        engine.registry.define("FRAUD_FLAG_RATE", [("fraud_flag", "BOOLEAN")],
                               percent_where(col("fraud_flag").eq(True)))
        engine.bindings.bind("insurance.raw.claims", ["fraud_flag"], "FRAUD_FLAG_RATE")
        engine.scheduler.set_schedule("insurance.raw.claims", "60 MINUTE")
        engine.start()

    Args:
        source: Entity source the metrics are evaluated against
        config: Engine settings; defaults to MonitoringConfig()
        dispatcher: Notification dispatcher; defaults to one with no channels
        classifier: Severity classifier; defaults to the built-in rules
        clock: Time source shared by all components
        registry: Metric registry; a new one with the system metrics by default
    """

    def __init__(
        self,
        source: EntitySource,
        config: Optional[MonitoringConfig] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        classifier: Optional[SeverityClassifier] = None,
        clock: Optional[Clock] = None,
        registry: Optional[MetricRegistry] = None
    ):
        self.source = source
        self.config = config or MonitoringConfig()
        self.clock = clock or utc_now
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.classifier = classifier or SeverityClassifier()

        if registry is None:
            registry = MetricRegistry()
            register_system_metrics(registry)
        self.registry = registry

        self.results = ResultStore()
        self.bindings = BindingStore(self.registry, source)
        self.evaluator = Evaluator(self.registry, source, self.results, clock=self.clock)
        self.scheduler = Scheduler(
            self.bindings,
            self.evaluator,
            max_workers=self.config.evaluation_workers,
            timeout_seconds=self.config.evaluation_timeout_seconds,
            clock=self.clock,
        )
        self.alerts = AlertRuleEngine(self.results, self.dispatcher, self.classifier, clock=self.clock)

        source.add_change_listener(self.scheduler.notify_changed)
        self._background: Optional[BackgroundScheduler] = None
        self._tick_lock = threading.Lock()

    def set_classifier(self, classifier: SeverityClassifier) -> None:
        """Swap the severity rules used by dashboards and alert rendering."""
        self.classifier = classifier
        self.alerts.classifier = classifier
        logger.info(f"Severity classifier updated ({len(classifier.rules)} rules)")

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Run one pass: due evaluations, then due alert rules.

        Evaluations of this pass complete (or time out) before alert rules are
        checked, so alerts see the results just written.
        """
        now = ensure_utc(now or self.clock())
        with self._tick_lock:
            report = TickReport(ticked_at=now)
            report.evaluations = self.scheduler.tick(now, wait=True)
            report.alerts = self.alerts.tick(now)
        logger.debug(str(report))
        return report

    def start(self) -> None:
        """Start the background heartbeat that calls tick()."""
        if self._background is not None:
            logger.warning("Monitoring engine already started")
            return

        background = BackgroundScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed heartbeats into one
                "max_instances": 1,  # Never overlap two passes
            },
        )
        background.add_listener(self._on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES)
        background.add_job(
            func=self._heartbeat,
            trigger=IntervalTrigger(seconds=self.config.heartbeat_seconds),
            id=HEARTBEAT_JOB_ID,
            name="Data quality monitoring heartbeat",
            replace_existing=True,
        )
        background.start()
        self._background = background
        logger.info(f"Monitoring engine started (heartbeat every {self.config.heartbeat_seconds}s)")

    def shutdown(self, wait: bool = True) -> None:
        """Stop the heartbeat and the evaluation worker pool."""
        if self._background is not None:
            self._background.shutdown(wait=wait)
            self._background = None
        self.scheduler.shutdown(wait=wait)
        self.source.remove_change_listener(self.scheduler.notify_changed)
        logger.info("Monitoring engine stopped")

    @property
    def running(self) -> bool:
        return self._background is not None and self._background.running

    def __enter__(self) -> "MonitoringEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def _heartbeat(self) -> None:
        report = self.tick()
        if report.evaluations or report.alerts:
            logger.info(
                f"Heartbeat: {len(report.evaluations)} evaluation(s), "
                f"{len(report.alerts)} alert check(s), {report.notifications_sent} notification(s)"
            )

    @staticmethod
    def _on_job_event(event) -> None:
        if getattr(event, "exception", None):
            logger.error(f"Job {event.job_id} failed with exception: {event.exception}")
        else:
            logger.warning(f"Job {event.job_id} skipped: previous run still in progress")

    # =========================================================================
    # VIEWS
    # =========================================================================

    def dashboard(self, entity_prefix: Optional[str] = None, limit: Optional[int] = None) -> List[DashboardRow]:
        return quality_dashboard(self.results, self.classifier, entity_prefix, limit)

    def issues(self, entity_prefix: Optional[str] = None) -> List[IssueRow]:
        return issue_summary(self.results, self.classifier, entity_prefix)
