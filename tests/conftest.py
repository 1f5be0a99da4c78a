"""Test configuration and fixtures for story_orchestrator.

This module provides:
- Broker fixtures (in-process broadcaster, recorded events)
- Orchestration fixtures (repository, store, scheduler)
- Integration fixtures (FastAPI TestClient around a full app)
"""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from story_orchestrator.app import build_orchestrator, create_app
from story_orchestrator.common.job_repository_impl import InMemoryJobRepository
from story_orchestrator.common.job_store import JobStore
from story_orchestrator.common.scheduler import DependencyScheduler
from story_orchestrator.config import OrchestratorSettings
from story_orchestrator.events.publisher import (
    DEFAULT_EVENT_CHANNEL,
    EventPublisher,
    EventTriple,
    decode_event,
)
from story_orchestrator.utils.mqtt import LocalBroadcaster

# ============================================================================
# Broker Fixtures
# ============================================================================


@pytest.fixture
def broadcaster() -> Iterator[LocalBroadcaster]:
    """Provide a connected in-process broadcaster."""
    broadcaster = LocalBroadcaster()
    _ = broadcaster.connect()
    yield broadcaster
    broadcaster.disconnect()


@pytest.fixture
def published(broadcaster: LocalBroadcaster) -> list[EventTriple]:
    """Record every event put on the event channel, decoded."""
    events: list[EventTriple] = []

    def record(_channel: str, message: str) -> None:
        events.append(decode_event(message))

    _ = broadcaster.subscribe(topic=DEFAULT_EVENT_CHANNEL, callback=record)
    return events


@pytest.fixture
def publisher(broadcaster: LocalBroadcaster) -> EventPublisher:
    return EventPublisher(broadcaster)


# ============================================================================
# Orchestration Fixtures
# ============================================================================


@pytest.fixture
def repository() -> InMemoryJobRepository:
    return InMemoryJobRepository()


@pytest.fixture
def store(repository: InMemoryJobRepository, publisher: EventPublisher) -> JobStore:
    """Provide a JobStore without a scheduler attached."""
    return JobStore(repository, publisher)


@pytest.fixture
def scheduler(store: JobStore) -> DependencyScheduler:
    """Attach a DependencyScheduler to the store fixture."""
    return DependencyScheduler(store)


# ============================================================================
# Integration Fixtures
# ============================================================================


@pytest.fixture
def settings() -> OrchestratorSettings:
    return OrchestratorSettings(mqtt_url=None, log_level="DEBUG", observer_queue_size=10)


@pytest.fixture
def api_client(settings: OrchestratorSettings) -> Iterator[TestClient]:
    """Provide a TestClient with the app lifespan running."""
    orchestrator = build_orchestrator(settings)
    app = create_app(settings, orchestrator)
    with TestClient(app) as client:
        yield client
