import asyncio
import logging
import time
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fieldtasks.db import SessionLocal, engine
from fieldtasks.errors import ApiError, error_response
from fieldtasks.logging_utils import setup_json_logging
from fieldtasks.routers import tasks
from fieldtasks.services.missed_tasks import mark_missed_tasks, resolve_scheduled_sweep_date
from fieldtasks.services.push_notifications import get_push_public_config
from fieldtasks.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from fieldtasks.settings import get_cors_origins, get_missed_sweep_local_time, get_settings

settings = get_settings()
setup_json_logging(service=settings.app_name, level=settings.log_level)
logger = logging.getLogger("fieldtasks.request")
sweeper_logger = logging.getLogger("fieldtasks.missed_sweep_worker")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = "anonymous"
    request.state.actor_id = None

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "anonymous"),
                "actor_id": getattr(request.state, "actor_id", None),
                "task_id": getattr(request.state, "task_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "api_error",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "code": exc.code,
            },
        )
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        extra=exc.extra_payload(),
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=400,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(tasks.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def run_scheduled_sweep(now_utc: datetime) -> dict[str, Any]:
    target_date = resolve_scheduled_sweep_date(
        now_utc,
        offset_hours=settings.civil_utc_offset_hours,
        cutoff_local=get_missed_sweep_local_time(),
    )
    with SessionLocal() as db:
        result = mark_missed_tasks(
            db,
            offset_hours=settings.civil_utc_offset_hours,
            target_date=target_date,
        )
    return {"target_date": result.target_date.isoformat(), "updated": result.updated}


async def _missed_sweep_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(30, int(settings.missed_sweep_interval_seconds))
    while not stop_event.is_set():
        try:
            summary = await asyncio.to_thread(run_scheduled_sweep, datetime.now(timezone.utc))
        except Exception:
            sweeper_logger.exception("missed_sweep_tick_failed")
        else:
            if summary["updated"]:
                sweeper_logger.info("missed_sweep_tick", extra=summary)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        sweeper_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    sweeper_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_missed_sweep_worker() -> None:
    if not settings.missed_sweep_worker_enabled:
        return
    if getattr(app.state, "missed_sweep_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_missed_sweep_worker_loop(stop_event))
    app.state.missed_sweep_worker_stop_event = stop_event
    app.state.missed_sweep_worker_task = task
    sweeper_logger.info(
        "missed_sweep_worker_started",
        extra={
            "interval_seconds": max(30, int(settings.missed_sweep_interval_seconds)),
            "cutoff_local": settings.missed_sweep_local_time,
            "civil_utc_offset_hours": settings.civil_utc_offset_hours,
        },
    )


@app.on_event("shutdown")
async def stop_missed_sweep_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "missed_sweep_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "missed_sweep_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.missed_sweep_worker_stop_event = None
    app.state.missed_sweep_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "push": get_push_public_config()["enabled"],
    }
