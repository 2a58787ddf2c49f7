from __future__ import annotations

from typing import Any

import httpx
import structlog

from shipwright.core.config import LauncherConfig
from shipwright.core.exceptions import LaunchError
from shipwright.core.types import ENV_BUCKET, JobSpecification, LaunchResult
from shipwright.launcher.base import JobLauncher

logger = structlog.get_logger(__name__)

RUN_TASK_PATH = "/tasks"
STOP_TASK_PATH = "/tasks/stop"


class HttpJobLauncher(JobLauncher):
    """Launch build containers through an HTTP run-task API.

    The request body follows the shape of a container-service ``RunTask``
    call: task definition and cluster, container environment overrides
    carrying the job specification, and network placement. The backend
    answers ``{"tasks": [{"taskArn": ...}], "failures": [...]}``; the task
    identifier becomes the launch handle.
    """

    name = "http"

    def __init__(
        self,
        config: LauncherConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.backend_url:
            raise LaunchError("HttpJobLauncher requires backend_url", code="MISCONFIGURED")
        self._config = config
        self._client = http_client
        self._owns_client = http_client is None

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        if self._client is not None:
            return
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._config.backend_url or "",
            headers=headers,
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise LaunchError("HttpJobLauncher not connected. Call connect() first.")
        return self._client

    # ------------------------------------------------------------------ #
    # Request translation
    # ------------------------------------------------------------------ #

    def build_request(self, spec: JobSpecification) -> dict[str, Any]:
        """Translate *spec* into the backend's run-task payload."""
        cfg = self._config
        env = {**spec.to_env(), ENV_BUCKET: cfg.bucket}
        return {
            "cluster": cfg.cluster,
            "taskDefinition": cfg.task_definition,
            "launchType": cfg.launch_type,
            "count": 1,
            "startedBy": f"shipwright:{spec.project_id}",
            "overrides": {
                "containerOverrides": [
                    {
                        "name": cfg.container_name,
                        "environment": [
                            {"name": name, "value": value} for name, value in env.items()
                        ],
                    }
                ]
            },
            "networkConfiguration": {
                "awsvpcConfiguration": {
                    "subnets": list(cfg.subnets),
                    "securityGroups": list(cfg.security_groups),
                    "assignPublicIp": "ENABLED" if cfg.assign_public_ip else "DISABLED",
                }
            },
        }

    # ------------------------------------------------------------------ #
    # JobLauncher
    # ------------------------------------------------------------------ #

    async def launch(self, spec: JobSpecification) -> LaunchResult:
        body = self.build_request(spec)
        data = await self._post(RUN_TASK_PATH, body, action="launch")

        failures = data.get("failures") or []
        if failures:
            reason = failures[0].get("reason", "unknown") if isinstance(failures[0], dict) else failures[0]
            raise LaunchError(
                f"Compute backend could not start the job: {reason}",
                code="LAUNCH_FAILED",
                details={"failures": failures},
            )

        tasks = data.get("tasks") or []
        handle = tasks[0].get("taskArn") if tasks and isinstance(tasks[0], dict) else None
        if not handle:
            raise LaunchError(
                "Compute backend accepted the request but returned no task",
                code="NO_TASK",
            )
        logger.info("job_launched", project=spec.project_id, handle=handle)
        return LaunchResult(project_id=spec.project_id, handle=str(handle), backend=self.name)

    async def cancel(self, launch: LaunchResult) -> bool:
        body = {
            "cluster": self._config.cluster,
            "task": launch.handle,
            "reason": "Cancelled by user",
        }
        try:
            resp = await self._http.post(STOP_TASK_PATH, json=body)
        except httpx.HTTPError as exc:
            raise LaunchError(f"Compute backend unreachable: {exc}", code="BACKEND_UNREACHABLE") from exc
        if resp.status_code in (404, 409):
            return False
        if resp.status_code >= 400:
            raise LaunchError(
                f"Compute backend refused to stop {launch.handle}: HTTP {resp.status_code}",
                code="CANCEL_REJECTED",
            )
        task = _json(resp).get("task") or {}
        was_running = task.get("lastStatus") != "STOPPED"
        logger.info("job_cancelled", project=launch.project_id, handle=launch.handle, was_running=was_running)
        return was_running

    async def _post(self, path: str, body: dict[str, Any], *, action: str) -> dict[str, Any]:
        try:
            resp = await self._http.post(path, json=body)
        except httpx.HTTPError as exc:
            raise LaunchError(
                f"Compute backend unreachable during {action}: {exc}",
                code="BACKEND_UNREACHABLE",
            ) from exc
        if resp.status_code >= 400:
            raise LaunchError(
                f"Compute backend rejected {action}: HTTP {resp.status_code}",
                code="BACKEND_REJECTED",
                details={"body": resp.text[:500]},
            )
        return _json(resp)


def _json(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise LaunchError("Compute backend returned invalid JSON", code="BAD_RESPONSE") from exc
    if not isinstance(data, dict):
        raise LaunchError("Compute backend returned an unexpected payload", code="BAD_RESPONSE")
    return data
