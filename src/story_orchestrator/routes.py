"""Job status routes and the observer WebSocket endpoint."""

import asyncio
import json
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from loguru import logger

from .common.errors import JobNotFoundError
from .common.job_store import JobStore
from .common.progress import ProgressInfo, project_progress
from .common.schema_job_record import JobPage, JobRecord, JobStats
from .events.room_bridge import DEFAULT_MAX_PENDING, ObserverConnection, RoomBridge


def resolve_topic(message: dict[str, object]) -> str | None:
    """Accept either {"topic": "story:1"} or {"channel": "story", "id": 1}."""
    topic = message.get("topic")
    if isinstance(topic, str) and topic:
        return topic
    channel = message.get("channel")
    room_id = message.get("id")
    if isinstance(channel, str) and channel and room_id is not None:
        return f"{channel}:{room_id}"
    return None


def handle_observer_message(
    bridge: RoomBridge,
    connection: ObserverConnection,
    raw: str,
) -> None:
    try:
        message = json.loads(raw)
    except ValueError:
        _ = connection.offer({"event": "error", "payload": {"message": "invalid JSON"}})
        return

    if not isinstance(message, dict):
        _ = connection.offer({"event": "error", "payload": {"message": "expected an object"}})
        return

    action = message.get("action")
    topic = resolve_topic(message)
    if action not in ("join", "leave") or topic is None:
        _ = connection.offer(
            {"event": "error", "payload": {"message": f"unsupported request: {action}"}}
        )
        return

    if action == "join":
        bridge.join(topic, connection)
        _ = connection.offer({"event": "joined", "payload": {"topic": topic}})
    else:
        bridge.leave(topic, connection)
        _ = connection.offer({"event": "left", "payload": {"topic": topic}})


def create_router(
    store: JobStore,
    bridge: RoomBridge,
    max_pending: int = DEFAULT_MAX_PENDING,
) -> APIRouter:
    """Create router with injected dependencies."""
    router = APIRouter()

    def get_job_or_404(job_id: str) -> JobRecord:
        try:
            return store.get(job_id)
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @router.get("/jobs", response_model=JobPage)
    async def list_jobs(
        page: Annotated[int, Query(ge=1)] = 1,
        page_size: Annotated[int, Query(ge=1, le=100)] = 10,
    ) -> JobPage:
        return store.list_jobs(page, page_size)

    @router.get("/jobs/stats", response_model=JobStats)
    async def job_stats() -> JobStats:
        return store.stats()

    @router.get("/jobs/{job_id}", response_model=JobRecord)
    async def get_job(job_id: str) -> JobRecord:
        return get_job_or_404(job_id)

    @router.get("/jobs/{job_id}/progress", response_model=ProgressInfo)
    async def get_job_progress(job_id: str) -> ProgressInfo:
        return project_progress(get_job_or_404(job_id))

    @router.get("/stories/{story_id}/jobs", response_model=list[JobRecord])
    async def list_story_jobs(story_id: int) -> list[JobRecord]:
        return store.list_by_story(story_id)

    @router.websocket("/ws")
    async def observe(websocket: WebSocket) -> None:
        bridge.bind_loop(asyncio.get_running_loop())
        connection = ObserverConnection(websocket.send_json, max_pending=max_pending)

        await websocket.accept()
        logger.info(f"Client connected: {connection.connection_id}")
        connection.mark_ready()
        sender = asyncio.create_task(connection.pump())

        try:
            while not connection.closed:
                raw = await websocket.receive_text()
                handle_observer_message(bridge, connection, raw)
        except WebSocketDisconnect as e:
            logger.debug(f"Observer {connection.connection_id} closed with code {e.code}")
        finally:
            connection.close()
            _ = sender.cancel()

    _ = (list_jobs, job_stats, get_job, get_job_progress, list_story_jobs, observe)
    return router
