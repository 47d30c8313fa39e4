"""
Unit tests for the Scheduler.

Tests the per-entity schedule state machine, timer and change-driven wakes,
the single in-flight evaluation per binding, cancellation and timeouts.
"""

import threading
from datetime import timedelta
from typing import Generator, Tuple

import pytest

from qualitykit.bindings import BindingStore
from qualitykit.errors import NotFoundError
from qualitykit.evaluator import Evaluator
from qualitykit.models import EvaluationStatus, ScheduleState
from qualitykit.registry import MetricRegistry
from qualitykit.result_store import ResultStore
from qualitykit.scheduler import EvaluationOutcome, Scheduler, get_summary
from qualitykit.sources import InMemoryEntitySource
from tests.fixtures import CLAIMS_ENTITY, FIXED_NOW, POLICIES_ENTITY, MutableClock


@pytest.fixture
def results() -> ResultStore:
    return ResultStore()


@pytest.fixture
def bindings(registry: MetricRegistry, claims_source: InMemoryEntitySource) -> BindingStore:
    return BindingStore(registry, claims_source)


@pytest.fixture
def scheduler(
    registry: MetricRegistry,
    claims_source: InMemoryEntitySource,
    bindings: BindingStore,
    results: ResultStore,
    clock: MutableClock,
) -> Generator[Scheduler, None, None]:
    """Scheduler over the claims source, listening for writes."""
    evaluator = Evaluator(registry, claims_source, results, clock=clock)
    scheduler = Scheduler(bindings, evaluator, max_workers=2, timeout_seconds=5, clock=clock)
    claims_source.add_change_listener(scheduler.notify_changed)
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def slow_metric(registry: MetricRegistry) -> Tuple[threading.Event, threading.Event]:
    """
    Define SLOW_ROW_COUNT, which blocks until released.

    Returns:
        (started, release) events
    """
    started = threading.Event()
    release = threading.Event()

    def slow_row_count(rows):
        started.set()
        release.wait(5)
        return len(rows)

    registry.define("SLOW_ROW_COUNT", [], slow_row_count)
    return started, release


class TestScheduleStateMachine:
    """Tests for attaching, suspending and resuming schedules."""

    def test_unscheduled_by_default(self, scheduler: Scheduler) -> None:
        """Entities without a schedule report UNSCHEDULED."""
        assert scheduler.get_state(CLAIMS_ENTITY) == ScheduleState.UNSCHEDULED

    def test_set_schedule_arms_timer(self, scheduler: Scheduler) -> None:
        """An interval schedule first fires one interval after it was set."""
        entry = scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")
        assert entry.state == ScheduleState.ACTIVE
        assert entry.armed_at == FIXED_NOW
        assert entry.next_fire_at == FIXED_NOW + timedelta(minutes=60)

    def test_set_schedule_replaces_and_rearms(self, scheduler: Scheduler, clock: MutableClock) -> None:
        """Setting a new schedule replaces the old one and re-arms from now."""
        scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")
        clock.advance(minutes=30)
        entry = scheduler.set_schedule(CLAIMS_ENTITY, "15 MINUTE")
        assert str(entry.schedule) == "15 MINUTE"
        assert entry.next_fire_at == FIXED_NOW + timedelta(minutes=45)
        assert len(scheduler.list_schedules()) == 1

    def test_suspend_and_resume(self, scheduler: Scheduler, clock: MutableClock) -> None:
        """Resuming re-arms the timer from the resume time."""
        scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")
        assert scheduler.suspend(CLAIMS_ENTITY).state == ScheduleState.SUSPENDED
        clock.advance(minutes=90)
        entry = scheduler.resume(CLAIMS_ENTITY)
        assert entry.state == ScheduleState.ACTIVE
        assert entry.next_fire_at == FIXED_NOW + timedelta(minutes=150)

    def test_unset_schedule(self, scheduler: Scheduler) -> None:
        """Unsetting returns the entity to UNSCHEDULED."""
        scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")
        scheduler.unset_schedule(CLAIMS_ENTITY)
        assert scheduler.get_state(CLAIMS_ENTITY) == ScheduleState.UNSCHEDULED

    @pytest.mark.parametrize("operation", ["suspend", "resume", "unset_schedule", "get_schedule"])
    def test_unknown_entity_raises(self, scheduler: Scheduler, operation: str) -> None:
        """Operations on an unscheduled entity raise NotFoundError."""
        with pytest.raises(NotFoundError):
            getattr(scheduler, operation)(CLAIMS_ENTITY)

    def test_invalid_schedule_raises(self, scheduler: Scheduler) -> None:
        """Unparseable schedules are rejected and nothing is attached."""
        with pytest.raises(ValueError):
            scheduler.set_schedule(CLAIMS_ENTITY, "hourly")
        assert scheduler.get_state(CLAIMS_ENTITY) == ScheduleState.UNSCHEDULED


class TestTimerWakes:
    """Tests for interval and cron driven evaluation."""

    def test_interval_due_after_one_interval(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        results: ResultStore,
        clock: MutableClock,
    ) -> None:
        """Nothing runs before the interval elapses; every binding runs when it does."""
        bindings.bind(CLAIMS_ENTITY, ["claim_id"], "DUPLICATE_COUNT")
        bindings.bind(CLAIMS_ENTITY, ["fraud_flag"], "FRAUD_FLAG_RATE")
        scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")

        clock.advance(minutes=59)
        assert scheduler.tick() == []

        clock.advance(minutes=1)
        outcomes = scheduler.tick()
        assert [o.status for o in outcomes] == [EvaluationStatus.SUCCEEDED] * 2
        assert {r.measured_at for r in results.all_results()} == {FIXED_NOW + timedelta(minutes=60)}

    def test_missed_fires_are_coalesced(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        results: ResultStore,
        clock: MutableClock,
    ) -> None:
        """A late tick runs once and the next fire stays on the interval grid."""
        bindings.bind(CLAIMS_ENTITY, ["claim_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")
        clock.advance(minutes=185)
        assert len(scheduler.tick()) == 1
        assert len(results) == 1
        assert scheduler.get_schedule(CLAIMS_ENTITY).next_fire_at == FIXED_NOW + timedelta(minutes=240)

    def test_cron_schedule(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        clock: MutableClock,
    ) -> None:
        """Cron schedules fire at their next matching time."""
        bindings.bind(CLAIMS_ENTITY, ["claim_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(CLAIMS_ENTITY, "USING CRON 30 * * * * UTC")
        clock.advance(minutes=29)
        assert scheduler.tick() == []
        clock.advance(minutes=1)
        assert len(scheduler.tick()) == 1

    def test_suspended_entity_not_due(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        clock: MutableClock,
    ) -> None:
        """Suspended schedules never fire."""
        bindings.bind(CLAIMS_ENTITY, ["claim_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")
        scheduler.suspend(CLAIMS_ENTITY)
        clock.advance(minutes=120)
        assert scheduler.tick() == []

    def test_only_due_entity_runs(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        clock: MutableClock,
    ) -> None:
        """Bindings on other entities are not evaluated."""
        bindings.bind(CLAIMS_ENTITY, ["claim_id"], "DUPLICATE_COUNT")
        bindings.bind(POLICIES_ENTITY, ["policy_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(CLAIMS_ENTITY, "10 MINUTE")
        scheduler.set_schedule(POLICIES_ENTITY, "60 MINUTE")
        clock.advance(minutes=10)
        assert [o.entity for o in scheduler.tick()] == [CLAIMS_ENTITY]


class TestChangeWakes:
    """Tests for trigger-on-write schedules."""

    def test_write_makes_entity_due_once(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        claims_source: InMemoryEntitySource,
    ) -> None:
        """A write causes exactly one evaluation on the next tick."""
        bindings.bind(POLICIES_ENTITY, ["policy_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(POLICIES_ENTITY, "TRIGGER_ON_CHANGES")
        assert scheduler.tick() == []

        claims_source.write(POLICIES_ENTITY, [{"policy_id": "POL-000", "coverage_limit": 1}])
        outcomes = scheduler.tick()
        assert len(outcomes) == 1
        assert outcomes[0].result.value == 1.0
        assert scheduler.tick() == []

    def test_several_writes_coalesce(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        claims_source: InMemoryEntitySource,
    ) -> None:
        """Writes between ticks collapse into one evaluation."""
        bindings.bind(POLICIES_ENTITY, ["policy_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(POLICIES_ENTITY, "TRIGGER_ON_CHANGES")
        claims_source.write(POLICIES_ENTITY, [{"policy_id": "POL-100"}])
        claims_source.write(POLICIES_ENTITY, [{"policy_id": "POL-101"}])
        assert len(scheduler.tick()) == 1

    def test_change_while_suspended_is_ignored(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        claims_source: InMemoryEntitySource,
    ) -> None:
        """Writes during suspension do not fire after resuming."""
        bindings.bind(POLICIES_ENTITY, ["policy_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(POLICIES_ENTITY, "TRIGGER_ON_CHANGES")
        scheduler.suspend(POLICIES_ENTITY)
        claims_source.write(POLICIES_ENTITY, [{"policy_id": "POL-100"}])
        scheduler.resume(POLICIES_ENTITY)
        assert scheduler.tick() == []

    def test_change_on_interval_entity_ignored(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        claims_source: InMemoryEntitySource,
    ) -> None:
        """Timer-driven entities do not react to writes."""
        bindings.bind(POLICIES_ENTITY, ["policy_id"], "DUPLICATE_COUNT")
        scheduler.set_schedule(POLICIES_ENTITY, "60 MINUTE")
        claims_source.write(POLICIES_ENTITY, [{"policy_id": "POL-100"}])
        assert scheduler.tick() == []


class TestExecution:
    """Tests for running evaluations."""

    def test_execute_now_ignores_schedule(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        results: ResultStore,
    ) -> None:
        """Manual runs evaluate every binding on the entity."""
        bindings.bind(CLAIMS_ENTITY, ["claim_amount", "policy_coverage_limit"], "CLAIMS_EXCEEDING_COVERAGE")
        outcomes = scheduler.execute_now(CLAIMS_ENTITY)
        assert outcomes[0].success
        assert results.latest_for(CLAIMS_ENTITY, "CLAIMS_EXCEEDING_COVERAGE").value == 5.0

    def test_failure_isolated_per_binding(
        self,
        registry: MetricRegistry,
        scheduler: Scheduler,
        bindings: BindingStore,
        results: ResultStore,
    ) -> None:
        """One failing binding does not stop its siblings."""
        registry.define("BROKEN", [], lambda rows: 1 / 0)
        bindings.bind(CLAIMS_ENTITY, [], "BROKEN")
        bindings.bind(CLAIMS_ENTITY, [], "ROW_COUNT")
        outcomes = {o.metric_name: o for o in scheduler.execute_now(CLAIMS_ENTITY)}
        assert outcomes["BROKEN"].status == EvaluationStatus.FAILED
        assert "division by zero" in outcomes["BROKEN"].message
        assert outcomes["ROW_COUNT"].status == EvaluationStatus.SUCCEEDED
        assert len(results) == 1

    def test_submit_unknown_binding_raises(self, scheduler: Scheduler) -> None:
        """Submitting an unknown binding raises NotFoundError."""
        with pytest.raises(NotFoundError):
            scheduler.submit("ROW_COUNT@nowhere()")


class TestInFlight:
    """At most one evaluation per binding is in flight."""

    def test_concurrent_submit_returns_none(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        results: ResultStore,
        slow_metric: Tuple[threading.Event, threading.Event],
    ) -> None:
        """A second submit while the first runs is refused and only one result is written."""
        started, release = slow_metric
        binding_id = bindings.bind(CLAIMS_ENTITY, [], "SLOW_ROW_COUNT")

        first = scheduler.submit(binding_id)
        assert started.wait(5)
        assert scheduler.is_in_flight(binding_id)
        assert scheduler.submit(binding_id) is None

        release.set()
        assert first.result(timeout=5).status == EvaluationStatus.SUCCEEDED
        assert len(results) == 1
        assert not scheduler.is_in_flight(binding_id)

    def test_busy_binding_skipped_by_tick(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        clock: MutableClock,
        slow_metric: Tuple[threading.Event, threading.Event],
    ) -> None:
        """A due binding that is still running is reported as SKIPPED."""
        started, release = slow_metric
        binding_id = bindings.bind(CLAIMS_ENTITY, [], "SLOW_ROW_COUNT")
        scheduler.set_schedule(CLAIMS_ENTITY, "1 MINUTE")

        running = scheduler.submit(binding_id)
        assert started.wait(5)
        clock.advance(minutes=1)
        outcomes = scheduler.tick(wait=False)
        assert [o.status for o in outcomes] == [EvaluationStatus.SKIPPED]

        release.set()
        assert running.result(timeout=5).success

    def test_unbind_cancels_in_flight(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        results: ResultStore,
        slow_metric: Tuple[threading.Event, threading.Event],
    ) -> None:
        """Unbinding cancels the running evaluation and no result is written."""
        started, release = slow_metric
        binding_id = bindings.bind(CLAIMS_ENTITY, [], "SLOW_ROW_COUNT")
        future = scheduler.submit(binding_id)
        assert started.wait(5)

        bindings.unbind(binding_id)
        release.set()
        assert future.result(timeout=5).status == EvaluationStatus.CANCELLED
        assert len(results) == 0

    def test_binding_churn_leaves_no_bookkeeping(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        slow_metric: Tuple[threading.Event, threading.Event],
    ) -> None:
        """Finished evaluations of unbound bindings leave nothing behind and can run again."""
        started, release = slow_metric
        release.set()
        for _ in range(3):
            binding_id = bindings.bind(CLAIMS_ENTITY, [], "SLOW_ROW_COUNT")
            assert scheduler.submit(binding_id).result(timeout=5).success
            bindings.unbind(binding_id)
            assert not scheduler.is_in_flight(binding_id)
        assert scheduler._in_flight == {}

    def test_suspend_cancels_in_flight(
        self,
        scheduler: Scheduler,
        bindings: BindingStore,
        results: ResultStore,
        slow_metric: Tuple[threading.Event, threading.Event],
    ) -> None:
        """Suspending an entity cancels its running evaluations."""
        started, release = slow_metric
        binding_id = bindings.bind(CLAIMS_ENTITY, [], "SLOW_ROW_COUNT")
        scheduler.set_schedule(CLAIMS_ENTITY, "60 MINUTE")
        future = scheduler.submit(binding_id)
        assert started.wait(5)

        scheduler.suspend(CLAIMS_ENTITY)
        release.set()
        assert future.result(timeout=5).status == EvaluationStatus.CANCELLED
        assert len(results) == 0

    def test_timeout_suppresses_result(
        self,
        registry: MetricRegistry,
        claims_source: InMemoryEntitySource,
        bindings: BindingStore,
        results: ResultStore,
        clock: MutableClock,
        slow_metric: Tuple[threading.Event, threading.Event],
    ) -> None:
        """An evaluation exceeding the timeout is reported TIMED_OUT and writes nothing."""
        started, release = slow_metric
        evaluator = Evaluator(registry, claims_source, results, clock=clock)
        impatient = Scheduler(bindings, evaluator, max_workers=1, timeout_seconds=0.2, clock=clock)
        bindings.bind(CLAIMS_ENTITY, [], "SLOW_ROW_COUNT")

        outcomes = impatient.execute_now(CLAIMS_ENTITY)
        assert [o.status for o in outcomes] == [EvaluationStatus.TIMED_OUT]

        release.set()
        impatient.shutdown(wait=True)
        assert len(results) == 0


class TestSummary:
    """Tests for outcome summaries."""

    def test_summary_counts_statuses(self) -> None:
        """The summary counts outcomes per status and lists failures."""
        outcomes = [
            EvaluationOutcome("a", CLAIMS_ENTITY, "ROW_COUNT", EvaluationStatus.SUCCEEDED),
            EvaluationOutcome("b", CLAIMS_ENTITY, "BROKEN", EvaluationStatus.FAILED, message="boom"),
        ]
        summary = get_summary(outcomes)
        assert "Total evaluations: 2" in summary
        assert "Succeeded: 1" in summary
        assert "❌ FAILED b: boom" in summary

    def test_empty_summary(self) -> None:
        """No outcomes gives a short message."""
        assert get_summary([]) == "No evaluations performed"
