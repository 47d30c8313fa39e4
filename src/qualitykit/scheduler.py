"""
Evaluation scheduler.

Each entity has at most one schedule, shared by all bindings on it. The
scheduler keeps a small state machine per entity::

    UNSCHEDULED -> ACTIVE(schedule) -> ACTIVE(new schedule)   (re-arm)
                        ACTIVE <-> SUSPENDED

On every tick it enumerates the entities that are due (timer fired, or a
trigger-on-write entity reported a change) and submits one evaluation per
binding to a worker pool. At most one evaluation per binding is in flight: a
tick that finds the previous run still going skips that binding instead of
queueing behind it.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from qualitykit.bindings import BindingStore
from qualitykit.errors import (
    ComputeError,
    DataUnavailableError,
    EvaluationCancelled,
    NotFoundError,
    QualityKitError,
)
from qualitykit.evaluator import Evaluator
from qualitykit.models import (
    Clock,
    EvaluationStatus,
    MetricBinding,
    MetricResult,
    OnChangeSchedule,
    ScheduleState,
    ensure_utc,
    parse_schedule,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class EvaluationOutcome:
    """Outcome of one evaluation attempt of a binding."""

    binding_id: str
    entity: str
    metric_name: str
    status: EvaluationStatus
    result: Optional[MetricResult] = None
    error: Optional[Exception] = None
    message: str = ""
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == EvaluationStatus.SUCCEEDED

    def __str__(self) -> str:
        """String representation of the outcome."""
        status = "✅" if self.success else "❌"
        return f"{status} {self.status.value} {self.binding_id}: {self.message}"


def get_summary(outcomes: List[EvaluationOutcome]) -> str:
    """
    Summarize a list of evaluation outcomes.

    Returns:
        Summary string
    """
    if not outcomes:
        return "No evaluations performed"

    counts = {status: 0 for status in EvaluationStatus}
    for outcome in outcomes:
        counts[outcome.status] += 1

    lines = ["Evaluation Summary:", f"  Total evaluations: {len(outcomes)}"]
    for status, count in counts.items():
        if count:
            lines.append(f"  {status.value.title().replace('_', ' ')}: {count}")

    unsuccessful = [o for o in outcomes if not o.success]
    if unsuccessful:
        lines.append("\nUnsuccessful evaluations:")
        for outcome in unsuccessful:
            lines.append(f"  - {outcome}")

    return "\n".join(lines)


@dataclass
class EntitySchedule:
    """Schedule state of one entity."""

    entity: str
    schedule: Any
    state: ScheduleState
    armed_at: datetime
    next_fire_at: Optional[datetime] = None
    change_pending: bool = False

    @property
    def is_event_driven(self) -> bool:
        return isinstance(self.schedule, OnChangeSchedule)


@dataclass
class _InFlight:
    binding_id: str
    entity: str
    cancel_event: threading.Event = field(default_factory=threading.Event)


class Scheduler:
    """
    Decides when bindings are due and runs their evaluations.

    Args:
        bindings: Binding store enumerated on each wake
        evaluator: Evaluator used for each run
        max_workers: Size of the evaluation worker pool
        timeout_seconds: Ceiling for one evaluation when a tick waits for completion
        clock: Time source; defaults to UTC wall-clock time
    """

    def __init__(
        self,
        bindings: BindingStore,
        evaluator: Evaluator,
        max_workers: int = 4,
        timeout_seconds: float = 300.0,
        clock: Optional[Clock] = None
    ):
        self.bindings = bindings
        self.evaluator = evaluator
        self.timeout_seconds = timeout_seconds
        self.clock = clock or utc_now
        self._schedules: Dict[str, EntitySchedule] = {}
        self._in_flight: Dict[str, _InFlight] = {}  # a binding is busy while it has an entry
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="qualitykit-eval")

        bindings.add_unbind_listener(self._on_unbind)

    # =========================================================================
    # SCHEDULE STATE MACHINE
    # =========================================================================

    def set_schedule(self, entity: str, schedule: Any) -> EntitySchedule:
        """
        Attach or replace an entity's schedule and re-arm it.

        Args:
            entity: Target entity
            schedule: Schedule model or text ("60 MINUTE", "USING CRON ...", "TRIGGER_ON_CHANGES")

        Returns:
            Snapshot of the entity's schedule state
        """
        parsed = parse_schedule(schedule)
        now = ensure_utc(self.clock())
        entry = EntitySchedule(
            entity=entity,
            schedule=parsed,
            state=ScheduleState.ACTIVE,
            armed_at=now,
            next_fire_at=parsed.next_fire_after(now, now),
        )
        with self._lock:
            previous = self._schedules.get(entity)
            self._schedules[entity] = entry

        if previous is None:
            logger.info(f"Scheduled {entity}: {parsed}")
        else:
            logger.info(f"Re-armed {entity}: {previous.schedule} -> {parsed}")
        return replace(entry)

    def suspend(self, entity: str) -> EntitySchedule:
        """
        Suspend an entity's schedule and cancel its in-flight evaluations.

        Raises:
            NotFoundError: If the entity has no schedule
        """
        with self._lock:
            entry = self._require(entity)
            entry.state = ScheduleState.SUSPENDED
            entry.change_pending = False
            snapshot = replace(entry)
        cancelled = self._cancel_entity(entity)
        logger.info(f"Suspended schedule of {entity} ({cancelled} in-flight evaluation(s) cancelled)")
        return snapshot

    def resume(self, entity: str) -> EntitySchedule:
        """
        Resume a suspended schedule, re-arming it from the current time.

        Raises:
            NotFoundError: If the entity has no schedule
        """
        now = ensure_utc(self.clock())
        with self._lock:
            entry = self._require(entity)
            if entry.state != ScheduleState.ACTIVE:
                entry.state = ScheduleState.ACTIVE
                entry.armed_at = now
                entry.next_fire_at = entry.schedule.next_fire_after(now, now)
            snapshot = replace(entry)
        logger.info(f"Resumed schedule of {entity}")
        return snapshot

    def unset_schedule(self, entity: str) -> None:
        """
        Remove an entity's schedule.

        Raises:
            NotFoundError: If the entity has no schedule
        """
        with self._lock:
            self._require(entity)
            del self._schedules[entity]
        self._cancel_entity(entity)
        logger.info(f"Unscheduled {entity}")

    def get_schedule(self, entity: str) -> EntitySchedule:
        """
        Raises:
            NotFoundError: If the entity has no schedule
        """
        with self._lock:
            return replace(self._require(entity))

    def get_state(self, entity: str) -> ScheduleState:
        with self._lock:
            entry = self._schedules.get(entity)
            return entry.state if entry else ScheduleState.UNSCHEDULED

    def list_schedules(self) -> List[EntitySchedule]:
        with self._lock:
            return [replace(e) for _, e in sorted(self._schedules.items())]

    def notify_changed(self, entity: str) -> None:
        """Record a data change; trigger-on-write entities become due on the next tick."""
        with self._lock:
            entry = self._schedules.get(entity)
            if entry and entry.state == ScheduleState.ACTIVE and entry.is_event_driven:
                entry.change_pending = True
                logger.debug(f"Change recorded for {entity}")

    def due_entities(self, now: Optional[datetime] = None) -> List[str]:
        """
        Collect entities due at ``now`` and advance their next fire times.

        Missed timer fires are coalesced into one run.
        """
        now = ensure_utc(now or self.clock())
        due: List[str] = []
        with self._lock:
            for entity, entry in sorted(self._schedules.items()):
                if entry.state != ScheduleState.ACTIVE:
                    continue
                if entry.is_event_driven:
                    if entry.change_pending:
                        entry.change_pending = False
                        due.append(entity)
                elif entry.next_fire_at is not None and entry.next_fire_at <= now:
                    entry.next_fire_at = entry.schedule.next_fire_after(now, entry.armed_at)
                    due.append(entity)
        return due

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def tick(self, now: Optional[datetime] = None, wait: bool = True) -> List[EvaluationOutcome]:
        """
        Run one scheduling pass.

        Args:
            now: Reference time; defaults to the clock
            wait: Wait for submitted evaluations (bounded by the timeout)

        Returns:
            Outcomes of the pass. Without ``wait`` only skipped bindings are reported.
        """
        due = self.due_entities(now)
        if due:
            logger.debug(f"Due entities: {due}")
        bindings = [b for entity in due for b in self.bindings.list_bindings(entity)]
        return self._run_bindings(bindings, wait)

    def execute_now(self, entity: str, wait: bool = True) -> List[EvaluationOutcome]:
        """Evaluate every binding on an entity immediately, regardless of its schedule."""
        logger.info(f"Manual evaluation of {entity}")
        return self._run_bindings(self.bindings.list_bindings(entity), wait)

    def submit(self, binding_id: str) -> Optional["Future[EvaluationOutcome]"]:
        """
        Submit one evaluation of a binding.

        Returns:
            A future resolving to the outcome, or None if an evaluation of the
            binding is already in flight

        Raises:
            NotFoundError: If the binding does not exist
        """
        binding = self.bindings.get(binding_id)
        with self._lock:
            if binding_id in self._in_flight:
                return None
            in_flight = _InFlight(binding_id, binding.entity)
            self._in_flight[binding_id] = in_flight

        try:
            return self._executor.submit(self._run, binding, in_flight)
        except RuntimeError:
            with self._lock:
                self._in_flight.pop(binding_id, None)
            raise

    def cancel(self, binding_id: str) -> bool:
        """
        Cancel the in-flight evaluation of a binding, if any.

        Returns:
            True if an evaluation was signalled
        """
        with self._lock:
            in_flight = self._in_flight.get(binding_id)
        if in_flight is None:
            return False
        in_flight.cancel_event.set()
        logger.info(f"Cancelling evaluation of {binding_id}")
        return True

    def is_in_flight(self, binding_id: str) -> bool:
        with self._lock:
            return binding_id in self._in_flight

    def shutdown(self, wait: bool = True) -> None:
        """Cancel in-flight evaluations and stop the worker pool."""
        with self._lock:
            pending = list(self._in_flight.values())
        for in_flight in pending:
            in_flight.cancel_event.set()
        self._executor.shutdown(wait=wait)

    def _run_bindings(self, bindings: List[MetricBinding], wait: bool) -> List[EvaluationOutcome]:
        outcomes: List[EvaluationOutcome] = []
        submitted = []
        for binding in bindings:
            try:
                future = self.submit(binding.binding_id)
            except NotFoundError:
                # Unbound between enumeration and submission
                continue
            if future is None:
                logger.warning(f"Skipping {binding.binding_id}: previous evaluation still in flight")
                outcomes.append(EvaluationOutcome(
                    binding_id=binding.binding_id,
                    entity=binding.entity,
                    metric_name=binding.metric_name,
                    status=EvaluationStatus.SKIPPED,
                    message="Previous evaluation still in flight",
                ))
                continue
            submitted.append((binding, future))

        if not wait:
            return outcomes

        deadline = time.monotonic() + self.timeout_seconds
        for binding, future in submitted:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                outcomes.append(future.result(timeout=remaining))
            except FutureTimeoutError:
                self.cancel(binding.binding_id)
                logger.warning(
                    f"Evaluation of {binding.binding_id} exceeded {self.timeout_seconds}s; result suppressed"
                )
                outcomes.append(EvaluationOutcome(
                    binding_id=binding.binding_id,
                    entity=binding.entity,
                    metric_name=binding.metric_name,
                    status=EvaluationStatus.TIMED_OUT,
                    message=f"Exceeded {self.timeout_seconds}s",
                    duration_seconds=self.timeout_seconds,
                ))
        return outcomes

    def _run(self, binding: MetricBinding, in_flight: _InFlight) -> EvaluationOutcome:
        started = time.monotonic()
        outcome = EvaluationOutcome(
            binding_id=binding.binding_id,
            entity=binding.entity,
            metric_name=binding.metric_name,
            status=EvaluationStatus.FAILED,
        )
        try:
            outcome.result = self.evaluator.evaluate(binding, in_flight.cancel_event)
            outcome.status = EvaluationStatus.SUCCEEDED
            outcome.message = f"value={outcome.result.value}"
        except EvaluationCancelled as e:
            outcome.status = EvaluationStatus.CANCELLED
            outcome.error = e
            outcome.message = "Cancelled before the result was written"
            logger.info(f"Evaluation of {binding.binding_id} cancelled")
        except (ComputeError, DataUnavailableError, NotFoundError) as e:
            outcome.error = e
            outcome.message = str(e)
            logger.warning(f"Evaluation of {binding.binding_id} failed: {e}")
        except QualityKitError as e:
            outcome.error = e
            outcome.message = str(e)
            logger.error(f"Evaluation of {binding.binding_id} failed: {e}")
        except Exception as e:
            outcome.error = e
            outcome.message = f"Unexpected error: {e}"
            logger.error(f"Unexpected error evaluating {binding.binding_id}: {e}", exc_info=True)
        finally:
            outcome.duration_seconds = time.monotonic() - started
            with self._lock:
                if self._in_flight.get(binding.binding_id) is in_flight:
                    del self._in_flight[binding.binding_id]
        return outcome

    def _cancel_entity(self, entity: str) -> int:
        with self._lock:
            targets = [f for f in self._in_flight.values() if f.entity == entity]
        for in_flight in targets:
            in_flight.cancel_event.set()
        return len(targets)

    def _on_unbind(self, binding: MetricBinding) -> None:
        self.cancel(binding.binding_id)

    def _require(self, entity: str) -> EntitySchedule:
        entry = self._schedules.get(entity)
        if entry is None:
            raise NotFoundError("Schedule for entity", entity)
        return entry
