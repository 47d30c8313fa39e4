"""
Shared pytest fixtures for qualitykit tests.

Provides a fixed clock, an in-memory source holding sample insurance data,
a registry with the claims metrics, recording notification channels and a
fully wired engine.
"""

from typing import Generator

import pytest

from qualitykit.config import MonitoringConfig
from qualitykit.engine import MonitoringEngine
from qualitykit.models import ChannelType
from qualitykit.notifications import NotificationDispatcher
from qualitykit.registry import MetricRegistry, register_system_metrics
from qualitykit.sources import InMemoryEntitySource
from tests.fixtures import (
    CLAIMS_COLUMNS,
    CLAIMS_ENTITY,
    POLICIES_COLUMNS,
    POLICIES_ENTITY,
    MutableClock,
    RecordingChannel,
    make_claim_rows,
    make_policy_rows,
    register_claims_metrics,
)


@pytest.fixture
def clock() -> MutableClock:
    """Clock fixed at 2025-01-12 10:00 UTC; tests advance it explicitly."""
    return MutableClock()


@pytest.fixture
def claims_source() -> InMemoryEntitySource:
    """
    In-memory source with 20 claims and 5 policies.

    5 claims exceed their coverage limit and 5 are flagged for fraud.
    """
    source = InMemoryEntitySource()
    source.create_entity(CLAIMS_ENTITY, CLAIMS_COLUMNS, make_claim_rows())
    source.create_entity(POLICIES_ENTITY, POLICIES_COLUMNS, make_policy_rows())
    return source


@pytest.fixture
def registry() -> MetricRegistry:
    """Registry with the system metrics and the claims metrics."""
    registry = MetricRegistry()
    register_system_metrics(registry)
    return register_claims_metrics(registry)


@pytest.fixture
def email_channel() -> RecordingChannel:
    return RecordingChannel(ChannelType.EMAIL)


@pytest.fixture
def ticket_channel() -> RecordingChannel:
    return RecordingChannel(ChannelType.TICKET)


@pytest.fixture
def dispatcher(email_channel: RecordingChannel, ticket_channel: RecordingChannel) -> NotificationDispatcher:
    """Dispatcher with recording email and ticket channels."""
    dispatcher = NotificationDispatcher()
    dispatcher.register(email_channel)
    dispatcher.register(ticket_channel)
    return dispatcher


@pytest.fixture
def engine(
    claims_source: InMemoryEntitySource,
    registry: MetricRegistry,
    dispatcher: NotificationDispatcher,
    clock: MutableClock,
) -> Generator[MonitoringEngine, None, None]:
    """
    Engine wired to the claims source, recording channels and the fixed clock.

    The worker pool is shut down after the test.
    """
    config = MonitoringConfig(evaluation_workers=2, evaluation_timeout_seconds=5)
    engine = MonitoringEngine(
        claims_source,
        config=config,
        dispatcher=dispatcher,
        clock=clock,
        registry=registry,
    )
    yield engine
    engine.shutdown()
