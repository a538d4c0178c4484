"""FastAPI app: /sync/*, /graphql and /health.

Run with:
    uvicorn txleg_sync.main:app --app-dir src --reload
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict

import strawberry
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import iterate_in_threadpool
from strawberry.fastapi import GraphQLRouter

from .broadcaster import CancellationToken, ProgressEvent, stream_sync
from .config import API_KEY, BILLS_FILE, CORS_ORIGINS, JOBS_FILE, SETTINGS_FILE
from .controller import SyncController
from .errors import (
    InvalidTransitionError,
    JobNotFoundError,
    SyncConfigError,
    SyncDisabledError,
    SyncError,
)
from .jobs import JsonJobRepository
from .models import SyncOptions
from .schema import BillType, SyncJobType, SyncStatusType
from .settings import JsonSettingsStore
from .store import JsonBillStore

# ── Configure logging ────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:     %(message)s",
    stream=sys.stderr,
    force=True,
)
LOGGER = logging.getLogger(__name__)

JOB_ACTIONS = ("start", "pause", "resume", "stop", "process")


# ── App state container ──────────────────────────────────────────────────────


class AppState:
    def __init__(self) -> None:
        self.controller: SyncController | None = None


state = AppState()


def build_controller() -> SyncController:
    """Wire a controller against the file-backed stores from config."""
    return SyncController(
        JsonSettingsStore(SETTINGS_FILE),
        JsonJobRepository(JOBS_FILE),
        JsonBillStore(BILLS_FILE),
    )


def get_controller() -> SyncController:
    if state.controller is None:
        state.controller = build_controller()
    return state.controller


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    controller = get_controller()
    active = controller.get_active_job()
    if active is not None:
        LOGGER.info(
            "Found %s sync job %s from a previous run (%d bills processed)",
            active.status.value.lower(),
            active.id,
            active.total_processed,
        )
    yield


# ── Request bodies ───────────────────────────────────────────────────────────


class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_bills: int | None = Field(default=None, alias="maxBills")
    bill_types: list[str] | None = Field(default=None, alias="billTypes")
    only_new: bool = Field(default=False, alias="onlyNew")
    job_id: str | None = Field(default=None, alias="jobId")

    def to_options(self) -> SyncOptions:
        return SyncOptions(
            max_bills=self.max_bills,
            bill_types=self.bill_types,
            only_new=self.only_new,
        )


class JobActionRequest(SyncRequest):
    action: str


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _sse(event: ProgressEvent) -> str:
    return f"event: {event.type}\ndata: {json.dumps(event.data)}\n\n"


# ── GraphQL ──────────────────────────────────────────────────────────────────


@strawberry.type
class Query:
    @strawberry.field(description="Look up one sync job by id.")
    def sync_job(self, id: str) -> SyncJobType | None:
        job = get_controller().jobs.get(id)
        return SyncJobType.from_model(job) if job else None

    @strawberry.field(description="The pending, running or paused job, if any.")
    def active_sync_job(self) -> SyncJobType | None:
        job = get_controller().get_active_job()
        return SyncJobType.from_model(job) if job else None

    @strawberry.field(description="Most recent sync jobs, newest first.")
    def recent_sync_jobs(self, limit: int = 10) -> list[SyncJobType]:
        jobs = get_controller().jobs.list_recent(max(1, min(limit, 100)))
        return [SyncJobType.from_model(j) for j in jobs]

    @strawberry.field(description="Bill counts and last sync time.")
    def sync_status(self) -> SyncStatusType:
        return SyncStatusType.from_status(get_controller().sync_status())

    @strawberry.field(description='Look up a stored bill by natural key, e.g. "HB 1".')
    def bill(self, bill_id: str) -> BillType | None:
        model = get_controller().store.find_bill(bill_id.strip().upper())
        return BillType.from_model(model) if model else None


from strawberry.extensions import QueryDepthLimiter  # noqa: E402

schema = strawberry.Schema(
    query=Query,
    extensions=[QueryDepthLimiter(max_depth=10)],
)
graphql_app = GraphQLRouter(schema)

app = FastAPI(title="TXLeg Bill Sync", lifespan=lifespan)

# ── CORS middleware ──────────────────────────────────────────────────────────
_cors_origins = [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API key authentication middleware ────────────────────────────────────────
@app.middleware("http")
async def _api_key_middleware(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    """Require ``X-API-Key`` header when ``TXLEG_API_KEY`` is set.

    Skips auth for the health endpoint, the docs, and OPTIONS (CORS preflight).
    """
    if API_KEY:
        exempt = {"/health", "/docs", "/openapi.json", "/redoc"}
        if request.url.path not in exempt and request.method != "OPTIONS":
            provided = request.headers.get("X-API-Key", "")
            if provided != API_KEY:
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Invalid or missing API key"},
                )
    return await call_next(request)


# ── Request logging middleware ───────────────────────────────────────────────
@app.middleware("http")
async def _request_logging_middleware(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
    """Log every request with method, path, and response time."""
    t0 = time.perf_counter()
    response: Response = await call_next(request)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    LOGGER.info(
        "%s %s %d (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


# ── Health endpoint ──────────────────────────────────────────────────────────
@app.get("/health")
def health() -> dict:
    controller = get_controller()
    active = controller.get_active_job()
    return {
        "status": "ok",
        "activeJob": active.id if active else None,
        "bills": sum(controller.store.count_by_type().values()),
    }


# ── Sync endpoints ───────────────────────────────────────────────────────────
# Plain ``def`` handlers: the controller blocks on HTTP and file I/O, so
# FastAPI runs these in its threadpool.


@app.post("/sync/trigger")
def sync_trigger(body: SyncRequest | None = None) -> Response:
    """Run a capped sync to completion and report the counts."""
    controller = get_controller()
    opts = (body or SyncRequest()).to_options()
    try:
        summary = controller.run(opts)
    except SyncDisabledError as exc:
        return _error(400, str(exc))
    except SyncConfigError as exc:
        return _error(409, str(exc))
    except Exception as exc:
        LOGGER.exception("Sync trigger failed")
        return _error(500, str(exc) or type(exc).__name__)
    content = summary.to_dict()
    content["job"] = controller.get_job(summary.job_id).to_dict()
    return JSONResponse(content=content)


@app.post("/sync/stream")
async def sync_stream(request: Request, body: SyncRequest | None = None) -> StreamingResponse:
    """Server-Sent Events feed of a new (or attached) sync run."""
    body = body or SyncRequest()
    token = CancellationToken()
    events = stream_sync(get_controller(), body.to_options(), token, job_id=body.job_id)

    async def _event_source() -> AsyncIterator[str]:
        try:
            async for event in iterate_in_threadpool(events):
                if await request.is_disconnected():
                    LOGGER.info("Sync stream client disconnected")
                    break
                yield _sse(event)
        finally:
            token.cancel()

    return StreamingResponse(
        _event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/sync/job")
def sync_active_job() -> dict:
    job = get_controller().get_active_job()
    return {"job": job.to_dict() if job else None}


@app.get("/sync/job/{job_id}")
def sync_job(job_id: str) -> Response:
    try:
        job = get_controller().get_job(job_id)
    except JobNotFoundError as exc:
        return _error(404, str(exc))
    return JSONResponse(content={"job": job.to_dict()})


@app.post("/sync/job")
def sync_job_action(body: JobActionRequest) -> Response:
    """Drive a job one step at a time (for polling UIs)."""
    controller = get_controller()
    action = body.action.strip().lower()
    if action not in JOB_ACTIONS:
        return _error(400, f"Unknown action: {body.action!r}")
    if action != "start" and not body.job_id:
        return _error(400, f"jobId is required for {action}")

    try:
        if action == "start":
            job = controller.trigger(body.to_options())
            return JSONResponse(content={"success": True, "job": job.to_dict()})
        if action == "process":
            batch = controller.process_next_batch(body.job_id)
            job = controller.get_job(body.job_id)
            return JSONResponse(
                content={"success": True, "job": job.to_dict(), "batch": asdict(batch)}
            )
        job = getattr(controller, action)(body.job_id)
    except SyncDisabledError as exc:
        return _error(400, str(exc))
    except JobNotFoundError as exc:
        return _error(404, str(exc))
    except (SyncConfigError, InvalidTransitionError) as exc:
        return _error(409, str(exc))
    except SyncError as exc:
        return _error(400, str(exc))
    except Exception as exc:
        LOGGER.exception("Sync job action %r failed", action)
        return _error(500, str(exc) or type(exc).__name__)
    return JSONResponse(content={"success": True, "job": job.to_dict()})


@app.get("/sync/status")
def sync_status() -> dict:
    return get_controller().sync_status()


app.include_router(graphql_app, prefix="/graphql")
