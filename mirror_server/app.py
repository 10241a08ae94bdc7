import asyncio
import json
import logging
import os
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from mirror_common.config import MirrorConfig
from mirror_common.models import MirrorRun, PushEvent, RunEvent
from mirror_common.repository import RunRepository
from mirror_controller.trigger import skip_reason
from mirror_persistence.sqlite_repository import SQLiteRunRepository

from .auth import SIGNATURE_HEADER, get_webhook_secret, require_api_token, verify_signature

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Global instance (initialized at startup)
repository: RunRepository | None = None

STREAM_POLL_INTERVAL = 0.5


def get_database_path() -> str:
    """
    Get the database path from environment or use default.

    Environment variables:
    - MIRROR_DB_PATH: Custom database path (useful for testing)
    """
    return os.environ.get("MIRROR_DB_PATH", "mirror_runs.db")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI app.

    Handles startup and shutdown events:
    - Startup: Connect to the database and make sure the schema exists
    - Shutdown: Close database connections

    Note: mirror-controller must be running separately to execute runs.
    The server only records them.
    """
    global repository

    repository = SQLiteRunRepository(get_database_path())
    await repository.initialize()

    yield

    if repository:
        await repository.close()


app = FastAPI(lifespan=lifespan)


def get_repository() -> RunRepository:
    """
    Get the global repository instance.

    Raises:
        RuntimeError: If repository is not initialized
    """
    if repository is None:
        raise RuntimeError("Repository not initialized")
    return repository


def get_config() -> MirrorConfig:
    """Pipeline settings, read from the environment on every request."""
    return MirrorConfig.from_env()


class TriggerRequest(BaseModel):
    """Body of a manual trigger."""

    ref: str | None = None  # Defaults to the configured branch
    message: str = "manual trigger"
    head_commit_id: str = ""


async def create_run(
    event: PushEvent, config: MirrorConfig, repo: RunRepository
) -> MirrorRun:
    """
    Record a run for a push, queued or skipped depending on the loop guard.

    Args:
        event: The push to mirror
        config: Pipeline settings (branch, marker)
        repo: Run repository

    Returns:
        The persisted run
    """
    reason = skip_reason(event, config.branch, config.skip_marker)
    run = MirrorRun(id=str(uuid.uuid4()), status="queued", trigger=event)

    if reason is not None:
        run.status = "skipped"
        run.success = True
        run.skip_reason = reason
        run.end_time = run.created_at
        run.events = [
            RunEvent(type="log", data=f"Skipping run: {reason}\n"),
            RunEvent(type="complete", success=True),
        ]
        logger.info(f"Skipped push {event.head_commit_id or event.ref}: {reason}")
    else:
        logger.info(f"Queued run {run.id} for {event.branch}@{event.head_commit_id}")

    await repo.create_run(run)
    return run


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def stream_run_events(
    run_id: str,
    repo: RunRepository,
    request: Request | None = None,
    from_beginning: bool = True,
) -> AsyncGenerator[str, None]:
    """
    Helper function to stream run events as SSE.

    Polls the repository for new events until the run's "complete" event
    has been sent.

    Args:
        run_id: UUID of the run to stream
        repo: RunRepository instance for database access
        request: Optional FastAPI request to check for client disconnection
        from_beginning: If True, replay past events. If False, only new ones.

    Yields:
        SSE-formatted event strings
    """
    run = await repo.get_run(run_id)
    if run is None:
        yield _sse({"type": "log", "data": "Run not found.\n"})
        yield _sse({"type": "complete", "success": False})
        return

    index = 0 if from_beginning else len(run.events)

    if not from_beginning and run.finished:
        yield _sse({"type": "log", "data": f"Run already {run.status}.\n"})
        yield _sse({"type": "complete", "success": bool(run.success)})
        return

    while True:
        events = await repo.get_events(run_id, from_index=index)
        for event in events:
            index += 1
            yield _sse(event.to_dict())
            if event.type == "complete":
                return

        if request and await request.is_disconnected():
            return

        run = await repo.get_run(run_id)
        if run is None:
            yield _sse({"type": "log", "data": "Run disappeared.\n"})
            yield _sse({"type": "complete", "success": False})
            return
        if run.finished and len(run.events) <= index:
            # Finished without a complete event (e.g. recovered after a crash)
            yield _sse({"type": "complete", "success": bool(run.success)})
            return

        await asyncio.sleep(STREAM_POLL_INTERVAL)


@app.post("/webhook")
async def receive_webhook(
    request: Request,
    x_github_event: str | None = Header(default=None),
    repo: RunRepository = Depends(get_repository),
    config: MirrorConfig = Depends(get_config),
):
    """
    Receive a GitHub webhook delivery.

    Push events to the configured branch create a run; pushes whose head
    commit was produced by the mirror itself are recorded as skipped.

    Raises:
        HTTPException: 401 if the signature is missing or wrong
        HTTPException: 400 if the body is not a valid push payload
    """
    body = await request.body()

    secret = get_webhook_secret()
    if secret is not None and not verify_signature(
        secret, body, request.headers.get(SIGNATURE_HEADER)
    ):
        logger.warning("Rejected webhook delivery with an invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    if x_github_event == "ping":
        return {"status": "pong"}

    if x_github_event != "push":
        return JSONResponse(
            status_code=202,
            content={"status": "ignored", "event": x_github_event},
        )

    try:
        payload = json.loads(body)
        event = PushEvent.from_github_payload(payload)
    except (ValueError, AttributeError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid push payload: {e}")

    run = await create_run(event, config, repo)
    return {"run_id": run.id, "status": run.status, "skip_reason": run.skip_reason}


@app.post("/runs", dependencies=[Depends(require_api_token)])
async def trigger_run(
    body: TriggerRequest,
    repo: RunRepository = Depends(get_repository),
    config: MirrorConfig = Depends(get_config),
) -> dict[str, Any]:
    """
    Queue a run manually.

    The loop guard still applies to the supplied message, so a manual
    trigger cannot start a run from an automation commit.
    """
    event = PushEvent(
        ref=body.ref or f"refs/heads/{config.branch}",
        head_commit_id=body.head_commit_id,
        head_commit_message=body.message,
        pusher="manual",
    )
    run = await create_run(event, config, repo)
    return {"run_id": run.id, "status": run.status, "skip_reason": run.skip_reason}


@app.get("/health")
async def health_check() -> dict[str, str]:
    """
    Health check endpoint (no authentication required).

    Returns:
        Dictionary with status="ok" if server is running
    """
    return {"status": "ok"}


@app.get("/runs")
async def list_runs(
    status: str | None = None,
    repo: RunRepository = Depends(get_repository),
) -> list[dict[str, Any]]:
    """
    List runs, newest first.

    Args:
        status: Only list runs in this status
    """
    runs = await repo.list_runs(status=status)
    return [run.to_summary_dict() for run in runs]


@app.get("/runs/{run_id}")
async def get_run(
    run_id: str,
    repo: RunRepository = Depends(get_repository),
) -> dict[str, Any]:
    """
    Get a run with its events.

    Raises:
        HTTPException: 404 if run_id not found
    """
    run = await repo.get_run(run_id)

    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")

    return run.to_dict()


@app.get("/runs/{run_id}/stream")
async def stream_run(
    run_id: str,
    request: Request,
    from_beginning: bool = False,
    repo: RunRepository = Depends(get_repository),
) -> StreamingResponse:
    """
    Stream events for a run via Server-Sent Events (SSE).

    By default only new events are streamed; from_beginning=True replays
    the run's whole log first.

    Raises:
        HTTPException: 404 if run_id not found
    """
    run = await repo.get_run(run_id)

    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")

    return StreamingResponse(
        stream_run_events(run_id, repo, request, from_beginning=from_beginning),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
