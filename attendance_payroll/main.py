import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from attendance_payroll.errors import ApiError, error_response
from attendance_payroll.logging_utils import setup_json_logging
from attendance_payroll.routers import admin, staff
from attendance_payroll.services.reconciliation import ReconciliationScheduler, RunReport
from attendance_payroll.settings import get_reconciliation_interval_seconds, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
logger = logging.getLogger("attendance_payroll.request")
reconciliation_worker_logger = logging.getLogger("attendance_payroll.reconciliation")


app = FastAPI(title=settings.app_name, version="0.1.0")


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor_id = (request.headers.get("X-Actor-Id") or "").strip() or "system"

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
                "actor_id": getattr(request.state, "actor_id", "system"),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
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
        status_code=422,
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


app.include_router(staff.router)
app.include_router(admin.router)


def _report_to_dict(report: RunReport | None) -> dict[str, Any] | None:
    if report is None:
        return None
    return {
        "started_at": report.started_at.isoformat(),
        "finished_at": report.finished_at.isoformat() if report.finished_at else None,
        "staff_processed": report.staff_processed,
        "staff_failed": report.staff_failed,
        "days_created": report.days_created,
        "days_upgraded": report.days_upgraded,
        "days_closed": report.days_closed,
        "overtime_closed": report.overtime_closed,
    }


async def _reconciliation_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = get_reconciliation_interval_seconds()
    scheduler = ReconciliationScheduler()
    while not stop_event.is_set():
        try:
            report = await asyncio.to_thread(scheduler.run)
        except Exception:
            reconciliation_worker_logger.exception("reconciliation_worker_tick_failed")
        else:
            app.state.last_reconciliation_report = report
            if report.staff_failed:
                reconciliation_worker_logger.warning(
                    "reconciliation_worker_partial_failure",
                    extra={"staff_failed": report.staff_failed},
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def start_reconciliation_worker() -> None:
    if not settings.reconciliation_worker_enabled:
        return
    if getattr(app.state, "reconciliation_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_reconciliation_worker_loop(stop_event))
    app.state.reconciliation_worker_stop_event = stop_event
    app.state.reconciliation_worker_task = task
    reconciliation_worker_logger.info(
        "reconciliation_worker_started",
        extra={"interval_seconds": get_reconciliation_interval_seconds()},
    )


@app.on_event("shutdown")
async def stop_reconciliation_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "reconciliation_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "reconciliation_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.reconciliation_worker_stop_event = None
    app.state.reconciliation_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    task = getattr(app.state, "reconciliation_worker_task", None)
    return {
        "status": "ok",
        "checked_at_utc": datetime.now(timezone.utc).isoformat(),
        "reconciliation_worker": {
            "enabled": settings.reconciliation_worker_enabled,
            "running": task is not None and not task.done(),
            "interval_seconds": get_reconciliation_interval_seconds(),
            "last_report": _report_to_dict(getattr(app.state, "last_reconciliation_report", None)),
        },
    }
