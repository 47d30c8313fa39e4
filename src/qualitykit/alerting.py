"""
Alert rule engine.

Each alert rule is checked on its own schedule. A check asks whether any
result for the rule's metric and entity, measured within the trailing window,
satisfies the threshold. Active rules then send one notification for the
newest satisfying result and record an AlertFiring; suspended rules are
checked but never notify.

Repeat behaviour while a condition persists is chosen per rule:
``TriggerMode.LEVEL`` notifies on every scheduled check, ``TriggerMode.EDGE``
notifies once and re-arms after a check finds the condition cleared.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from qualitykit.errors import DispatchError, NotFoundError
from qualitykit.models import (
    AlertFiring,
    AlertRule,
    AlertState,
    Clock,
    MetricResult,
    Severity,
    TriggerMode,
    ensure_utc,
    utc_now,
)
from qualitykit.notifications import DeliveryReceipt, NotificationDispatcher
from qualitykit.result_store import ResultStore
from qualitykit.severity import SeverityClassifier

logger = logging.getLogger(__name__)


@dataclass
class AlertCheck:
    """Outcome of checking one alert rule."""

    rule_name: str
    checked_at: datetime
    condition_met: bool = False
    result: Optional[MetricResult] = None
    severity: Optional[Severity] = None
    notified: bool = False
    receipt: Optional[DeliveryReceipt] = None
    firing: Optional[AlertFiring] = None
    error: Optional[Exception] = None
    message: str = ""

    def __str__(self) -> str:
        status = "🔔" if self.notified else ("❌" if self.error else "✅")
        return f"{status} {self.rule_name}: {self.message}"


@dataclass
class _RuleSlot:
    rule: AlertRule
    armed_at: datetime
    next_check_at: Optional[datetime]
    latched: bool = False  # EDGE rules: notified and condition not yet cleared
    lock: threading.Lock = field(default_factory=threading.Lock)


class AlertRuleEngine:
    """
    Manages alert rules and runs their scheduled checks.

    Args:
        store: Result store the conditions are evaluated over
        dispatcher: Notification dispatcher for active rules
        classifier: Severity classifier used when rendering notifications
        clock: Time source; defaults to UTC wall-clock time
    """

    def __init__(
        self,
        store: ResultStore,
        dispatcher: NotificationDispatcher,
        classifier: Optional[SeverityClassifier] = None,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.classifier = classifier or SeverityClassifier()
        self.clock = clock or utc_now
        self._slots: Dict[str, _RuleSlot] = {}
        self._firings: List[AlertFiring] = []
        self._lock = threading.RLock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create_rule(self, rule: AlertRule) -> AlertRule:
        """
        Create or replace an alert rule. Replacing re-arms its schedule.

        Returns:
            The stored rule
        """
        now = ensure_utc(self.clock())
        slot = _RuleSlot(rule=rule, armed_at=now, next_check_at=rule.schedule.next_fire_after(now, now))
        with self._lock:
            replaced = rule.name in self._slots
            self._slots[rule.name] = slot

        action = "Replaced" if replaced else "Created"
        logger.info(f"{action} alert rule {rule.name} ({rule.state.value}, {rule.schedule})")
        return rule

    def resume(self, name: str) -> AlertRule:
        """Activate a rule."""
        return self._set_state(name, AlertState.ACTIVE)

    def suspend(self, name: str) -> AlertRule:
        """Deactivate a rule; it keeps being checked but never notifies."""
        return self._set_state(name, AlertState.SUSPENDED)

    def drop(self, name: str) -> None:
        with self._lock:
            if self._slots.pop(name, None) is None:
                raise NotFoundError("Alert rule", name)
        logger.info(f"Dropped alert rule {name}")

    def get_rule(self, name: str) -> AlertRule:
        return self._require(name).rule

    def list_rules(self) -> List[AlertRule]:
        with self._lock:
            return [self._slots[n].rule for n in sorted(self._slots)]

    def next_check_at(self, name: str) -> Optional[datetime]:
        return self._require(name).next_check_at

    def firings(self, rule_name: Optional[str] = None) -> List[AlertFiring]:
        """Audit history of delivered alerts, oldest first."""
        with self._lock:
            return [f for f in self._firings if rule_name is None or f.rule_name == rule_name]

    # =========================================================================
    # CHECKS
    # =========================================================================

    def tick(self, now: Optional[datetime] = None) -> List[AlertCheck]:
        """
        Check every rule that is due at ``now``.

        Each due rule is checked once; a failing rule does not stop the others.
        """
        now = ensure_utc(now or self.clock())
        due: List[str] = []
        with self._lock:
            for name, slot in sorted(self._slots.items()):
                if slot.next_check_at is not None and slot.next_check_at <= now:
                    slot.next_check_at = slot.rule.schedule.next_fire_after(now, slot.armed_at)
                    due.append(name)

        checks = []
        for name in due:
            try:
                checks.append(self.check_rule(name, now))
            except NotFoundError:
                # Dropped after it became due
                continue
            except Exception as e:
                logger.error(f"Alert rule {name} failed: {e}", exc_info=True)
                checks.append(AlertCheck(rule_name=name, checked_at=now, error=e, message=f"Unexpected error: {e}"))
        return checks

    def check_rule(self, name: str, now: Optional[datetime] = None) -> AlertCheck:
        """
        Evaluate one rule immediately and notify if it is active and satisfied.

        Raises:
            NotFoundError: If the rule does not exist
        """
        now = ensure_utc(now or self.clock())
        slot = self._require(name)

        with slot.lock:
            rule = slot.rule
            check = AlertCheck(rule_name=name, checked_at=now)
            result = self.find_satisfying_result(rule, now)

            if result is None:
                slot.latched = False
                check.message = f"No {rule.metric_name} result on {rule.entity} with {rule.predicate} in the last {rule.window_minutes} minutes"
                return check

            check.condition_met = True
            check.result = result
            check.severity = self.classifier.classify(result)

            if rule.state != AlertState.ACTIVE:
                check.message = "Condition met; rule is suspended"
                logger.debug(f"Alert rule {name} condition met while suspended")
                return check
            if rule.trigger_mode == TriggerMode.EDGE and slot.latched:
                check.message = "Condition still met; already notified"
                return check

            context = self.render_context(rule, result, check.severity)
            rendered = rule.template.render(context)
            try:
                receipt = self.dispatcher.send(
                    rule.template.channel,
                    rule.template.recipient,
                    rendered["subject"],
                    rendered["body"],
                    **rule.template.ticket_fields(),
                )
            except DispatchError as e:
                check.error = e
                check.message = f"Dispatch failed: {e}"
                logger.warning(f"Alert rule {name}: {e}")
                return check

            firing = AlertFiring(
                rule_name=name,
                fired_at=now,
                metric_name=result.metric_name,
                entity=result.entity,
                value=result.value,
                threshold=rule.predicate.threshold,
                severity=check.severity,
                measured_at=result.measured_at,
                ticket_key=receipt.ticket_key,
                details={"channel": receipt.channel.value, "recipient": receipt.recipient, "status": receipt.status},
            )
            with self._lock:
                self._firings.append(firing)
            slot.latched = True

            check.notified = True
            check.receipt = receipt
            check.firing = firing
            check.message = rendered["subject"]
            logger.info(f"Alert {name} fired: {result.metric_name}={result.value} on {result.entity}")
            return check

    def find_satisfying_result(self, rule: AlertRule, now: datetime) -> Optional[MetricResult]:
        """Newest result in the trailing window satisfying the rule's threshold."""
        now = ensure_utc(now)
        window_start = now - timedelta(minutes=rule.window_minutes)
        candidates = [
            r for r in self.store.query(rule.entity, rule.metric_name, since=window_start)
            if window_start < r.measured_at <= now and rule.predicate.holds(r.value)
        ]
        return candidates[-1] if candidates else None

    @staticmethod
    def render_context(rule: AlertRule, result: MetricResult, severity: Severity) -> Dict[str, Any]:
        return {
            "rule_name": rule.name,
            "metric_name": result.metric_name,
            "value": f"{result.value:g}" if result.value is not None else "NULL",
            "threshold": f"{rule.predicate.threshold:g}",
            "operator": rule.predicate.operator.value,
            "entity": result.entity,
            "severity": severity.value,
            "measured_at": result.measured_at.isoformat(),
            "comment": rule.comment or "",
        }

    def _set_state(self, name: str, state: AlertState) -> AlertRule:
        slot = self._require(name)
        with slot.lock:
            slot.rule = slot.rule.model_copy(update={"state": state})
            if state == AlertState.ACTIVE:
                slot.latched = False
        logger.info(f"Alert rule {name} is now {state.value}")
        return slot.rule

    def _require(self, name: str) -> _RuleSlot:
        with self._lock:
            slot = self._slots.get(name)
        if slot is None:
            raise NotFoundError("Alert rule", name)
        return slot
