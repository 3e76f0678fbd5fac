"""API route handlers for setup orchestration endpoints."""

import asyncio
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from bootstrapper.api.models import (
    CredentialRequest,
    ErrorResponse,
    ProgressResponse,
    RetryRequest,
    SuccessResponse,
)
from bootstrapper.models.errors import (
    AlreadyResolved,
    BootstrapError,
    ChannelError,
    OrchestratorError,
    UnknownOrStaleRequest,
)
from bootstrapper.models.status import FAILED_STAGES, LogSource, to_wire
from bootstrapper.services.orchestrator import InstallationOrchestrator

router = APIRouter(prefix="/api/v1.0/setup")

KEEPALIVE_SECONDS = 15.0


def get_orchestrator(request: Request) -> InstallationOrchestrator:
    return request.app.state.orchestrator


def _ok(data: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=SuccessResponse(data=data).model_dump(mode="json"),
    )


def _error(code: int, error: BootstrapError, orchestrator: InstallationOrchestrator) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=ErrorResponse(
            code=code, msg=str(error), stage=to_wire(orchestrator.stage)
        ).model_dump(mode="json"),
    )


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(request: Request):
    """GET /api/v1.0/setup/progress - Query current setup status.

    Response format (success):
        {
            "code": 200,
            "msg": "success",
            "data": {
                "stage": "RuntimeInstalling",
                "progress": 30,
                "message": "Installing container runtime...",
                "error": null,
                "failed_at": null,
                "pending_request_id": null,
                "platform": "linux"
            }
        }

    Failed stages answer with code 500 and the error in ``msg``.
    """
    status = get_orchestrator(request).snapshot()
    if status.stage in FAILED_STAGES:
        msg = f"Setup failed: {status.error}" if status.error else "Setup failed"
        body = ProgressResponse(code=500, msg=msg, data=status)
    else:
        body = ProgressResponse(code=200, msg="success", data=status)
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


@router.post("/start", response_model=SuccessResponse)
async def post_start(request: Request):
    """POST /api/v1.0/setup/start - Begin setup in the background.

    Returns code 409 when setup is already running, started or complete.
    """
    orchestrator = get_orchestrator(request)
    try:
        await orchestrator.start_setup()
    except OrchestratorError as e:
        return _error(409, e, orchestrator)
    return _ok({"stage": to_wire(orchestrator.stage)})


@router.post("/confirm", response_model=SuccessResponse)
async def post_confirm(request: Request):
    """POST /api/v1.0/setup/confirm - Operator confirmation at AwaitingStart."""
    orchestrator = get_orchestrator(request)
    try:
        await orchestrator.confirm_start()
    except OrchestratorError as e:
        return _error(409, e, orchestrator)
    return _ok({"stage": to_wire(orchestrator.stage)})


@router.post("/credential", response_model=SuccessResponse)
async def post_credential(payload: CredentialRequest, request: Request):
    """POST /api/v1.0/setup/credential - Answer the outstanding privilege request.

    Returns code 404 for unknown or stale request ids and 409 for duplicates.
    """
    orchestrator = get_orchestrator(request)
    try:
        orchestrator.submit_credential(payload.request_id, payload.secret)
    except UnknownOrStaleRequest as e:
        return _error(404, e, orchestrator)
    except AlreadyResolved as e:
        return _error(409, e, orchestrator)
    except ChannelError as e:
        return _error(400, e, orchestrator)
    return _ok()


@router.post("/retry", response_model=SuccessResponse)
async def post_retry(request: Request, payload: Optional[RetryRequest] = None):
    """POST /api/v1.0/setup/retry - Re-enter the stage that failed."""
    orchestrator = get_orchestrator(request)
    stage_hint = payload.stage if payload else None
    try:
        await orchestrator.retry(stage_hint)
    except OrchestratorError as e:
        return _error(409, e, orchestrator)
    return _ok({"stage": to_wire(orchestrator.stage)})


@router.post("/cancel", response_model=SuccessResponse)
async def post_cancel(request: Request):
    """POST /api/v1.0/setup/cancel - Abandon the in-flight setup run."""
    orchestrator = get_orchestrator(request)
    try:
        await orchestrator.cancel()
    except OrchestratorError as e:
        return _error(409, e, orchestrator)
    return _ok({"stage": to_wire(orchestrator.stage)})


@router.get("/logs")
async def get_logs(request: Request, source: LogSource):
    """GET /api/v1.0/setup/logs?source=container - Lines accumulated so far."""
    lines = get_orchestrator(request).logs(source)
    return _ok({"lines": [line.model_dump(mode="json") for line in lines]})


@router.get("/events")
async def stream_events(request: Request):
    """GET /api/v1.0/setup/events - Server-Sent Events stream of setup events.

    Each event is one ``data:`` line holding a JSON object with a ``type`` of
    ``stage``, ``log`` or ``privilege_request``.
    """
    subscription = get_orchestrator(request).subscribe_events()

    async def event_stream():
        yield b": ok\n\n"
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(subscription.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield b": keepalive\n\n"
                    continue
                except StopAsyncIteration:
                    break
                yield f"data: {event.model_dump_json()}\n\n".encode()
        finally:
            subscription.close()

    return StreamingResponse(event_stream(), media_type="text/event-stream")
