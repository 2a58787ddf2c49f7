"""Dispatch endpoints: queue a build, cancel it, health."""

from __future__ import annotations

from collections import OrderedDict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

import structlog

from shipwright.core.exceptions import LaunchError, ValidationError
from shipwright.core.types import LaunchResult
from shipwright.dispatch.schemas import (
    CancelResponse,
    ErrorResponse,
    ProjectRequest,
    QueuedData,
    QueuedResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["projects"])

LAUNCH_FAILED = "Failed to start build"
CANCEL_FAILED = "Failed to cancel build"
UNKNOWN_PROJECT = "Unknown project"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _remember(launches: OrderedDict[str, LaunchResult], result: LaunchResult, limit: int) -> None:
    launches[result.project_id] = result
    launches.move_to_end(result.project_id)
    while len(launches) > limit:
        project, _ = launches.popitem(last=False)
        logger.debug("dispatch_launch_forgotten", project=project)


@router.post("/api/project")
async def create_project(request: Request) -> JSONResponse:
    """Validate the request, launch its build job and return the tracking handle."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    try:
        body = ProjectRequest.parse(payload)
        spec = body.to_spec()
    except ValidationError as exc:
        logger.info("dispatch_rejected", reason=str(exc), **exc.details)
        return _error(400, str(exc))

    logger.info("dispatch_received", project=spec.project_id, repository=spec.repository_url)
    launcher = request.app.state.launcher
    try:
        result: LaunchResult = await launcher.launch(spec)
    except LaunchError as exc:
        logger.error("dispatch_launch_failed", project=spec.project_id, error=str(exc), code=exc.code)
        return _error(500, LAUNCH_FAILED)
    except Exception:  # noqa: BLE001
        logger.exception("dispatch_launch_crashed", project=spec.project_id)
        return _error(500, LAUNCH_FAILED)

    config = request.app.state.config
    _remember(request.app.state.launches, result, config.max_tracked_launches)
    response = QueuedResponse(
        data=QueuedData(projectName=spec.project_id, url=config.preview_url(spec.project_id))
    )
    logger.info("dispatch_queued", project=spec.project_id, handle=result.handle)
    return JSONResponse(content=response.model_dump())


@router.delete("/api/project/{project_name}")
async def cancel_project(project_name: str, request: Request) -> JSONResponse:
    """Best-effort stop of a launched build. Already-finished builds are a no-op."""
    launches: OrderedDict[str, LaunchResult] = request.app.state.launches
    launch = launches.get(project_name)
    if launch is None:
        return _error(404, UNKNOWN_PROJECT)

    try:
        stopped = await request.app.state.launcher.cancel(launch)
    except LaunchError as exc:
        logger.error("dispatch_cancel_failed", project=project_name, error=str(exc))
        return _error(500, CANCEL_FAILED)

    if not stopped:
        launches.pop(project_name, None)
    status = "cancelled" if stopped else "finished"
    logger.info("dispatch_cancel", project=project_name, status=status)
    return JSONResponse(content=CancelResponse(status=status).model_dump())


@router.get("/api/health")
async def health(request: Request) -> JSONResponse:
    launcher = request.app.state.launcher
    return JSONResponse(content={"healthy": True, "launcher": launcher.name})
