"""Application wiring - builds the orchestration graph and the FastAPI app."""

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from loguru import logger

from .common.job_repository import JobRepository
from .common.job_repository_impl import InMemoryJobRepository
from .common.job_store import JobStore
from .common.scheduler import DependencyScheduler
from .config import OrchestratorSettings
from .events.publisher import EventPublisher
from .events.room_bridge import RoomBridge
from .routes import create_router
from .utils.mqtt import BroadcasterBase, create_broadcaster


@dataclass
class Orchestrator:
    """Every core component, wired explicitly."""

    broadcaster: BroadcasterBase
    publisher: EventPublisher
    repository: JobRepository
    store: JobStore
    scheduler: DependencyScheduler
    bridge: RoomBridge


def configure_logging(level: str) -> None:
    logger.remove()
    _ = logger.add(sys.stderr, level=level.upper())


def build_orchestrator(
    settings: OrchestratorSettings,
    *,
    repository: JobRepository | None = None,
    broadcaster: BroadcasterBase | None = None,
) -> Orchestrator:
    """Wire store, scheduler, publisher and bridge around one broker client.

    Raises:
        RuntimeError: If the MQTT broker cannot be reached.
    """
    if broadcaster is None:
        broadcaster = create_broadcaster(
            settings.mqtt_url, connect_timeout=settings.mqtt_connect_timeout
        )
    if repository is None:
        repository = InMemoryJobRepository()

    publisher = EventPublisher(broadcaster, channel=settings.event_channel)
    store = JobStore(repository, publisher)
    scheduler = DependencyScheduler(store)
    bridge = RoomBridge(broadcaster, channel=settings.event_channel)

    return Orchestrator(
        broadcaster=broadcaster,
        publisher=publisher,
        repository=repository,
        store=store,
        scheduler=scheduler,
        bridge=bridge,
    )


def create_app(
    settings: OrchestratorSettings | None = None,
    orchestrator: Orchestrator | None = None,
) -> FastAPI:
    """Create the FastAPI app serving job status and observer rooms.

    Example:
        app = create_app(OrchestratorSettings(mqtt_url="mqtt://localhost:1883"))
        store = app.state.orchestrator.store
    """
    settings = settings or OrchestratorSettings()
    configure_logging(settings.log_level)
    orchestrator = orchestrator or build_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        orchestrator.bridge.bind_loop(asyncio.get_running_loop())
        orchestrator.bridge.start()
        logger.info(f"Lifespan startup: bridging channel {settings.event_channel}")
        yield
        orchestrator.bridge.stop()
        orchestrator.broadcaster.disconnect()
        logger.info("Lifespan shutdown.")

    app = FastAPI(title="story-orchestrator", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(
        create_router(
            orchestrator.store,
            orchestrator.bridge,
            max_pending=settings.observer_queue_size,
        )
    )
    return app
