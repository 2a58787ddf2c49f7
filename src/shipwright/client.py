"""Python client for the dispatch API and the realtime gateway.

Usage::

    async with ShipwrightClient("http://localhost:3000", "ws://localhost:9000/ws") as client:
        handle = await client.deploy("https://github.com/acme/site")
        print(handle.url)
        async for line in client.follow(handle.project_name):
            print(line.timestamp, line.message)
"""

from __future__ import annotations

import json
import random
import re
from typing import Any, AsyncIterator

import httpx
import structlog
import websockets.exceptions
from pydantic import BaseModel
from websockets.asyncio.client import connect as ws_connect

from shipwright.core.constants import DEFAULT_BUILD_COMMAND, DEFAULT_OUTPUT_DIR, EventKind, Severity
from shipwright.core.exceptions import (
    GatewayProtocolError,
    LaunchError,
    ShipwrightError,
    ValidationError,
)
from shipwright.core.types import BuildOutcome, log_topic

logger = structlog.get_logger(__name__)

_REPOSITORY_URL_RE = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/]+)/?$")

_ADJECTIVES = (
    "amber", "brave", "calm", "crisp", "dusty", "eager", "fancy", "gentle",
    "happy", "icy", "jolly", "kind", "lively", "misty", "noble", "odd",
    "plain", "quick", "rapid", "shiny", "silent", "sunny", "tidy", "vivid",
    "warm", "witty", "young", "zesty",
)
_NOUNS = (
    "anchor", "badger", "beacon", "canyon", "cedar", "comet", "delta", "ember",
    "falcon", "forest", "harbor", "island", "jungle", "lagoon", "meadow",
    "nebula", "otter", "pebble", "prairie", "quartz", "river", "summit",
    "thunder", "tundra", "valley", "walrus", "willow", "zephyr",
)


def generate_slug(words: int = 2) -> str:
    """Random ``adjective-...-noun`` project name, e.g. ``"misty-harbor"``."""
    if words < 1:
        raise ValueError("words must be at least 1")
    parts = [random.choice(_ADJECTIVES) for _ in range(words - 1)]  # noqa: S311
    parts.append(random.choice(_NOUNS))  # noqa: S311
    return "-".join(parts)


def is_repository_url(url: str) -> bool:
    """Whether *url* points at a GitHub repository (``github.com/<owner>/<repo>``)."""
    if not url or not url.strip():
        return False
    return bool(_REPOSITORY_URL_RE.match(url.strip()))


class DeployHandle(BaseModel):
    """What the dispatch API answers for a queued build."""

    project_name: str
    url: str
    status: str = "queued"

    @property
    def topic(self) -> str:
        return log_topic(self.project_name)


class LogLine(BaseModel):
    """One line of a followed build log.

    Structured payloads fill every field; a plain-text payload only sets
    ``message``.
    """

    message: str
    timestamp: str | None = None
    severity: Severity | None = None
    kind: EventKind | None = None
    seq: int | None = None
    stage: str | None = None
    outcome: BuildOutcome | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind is EventKind.OUTCOME

    @classmethod
    def parse(cls, data: str) -> LogLine:
        try:
            payload = json.loads(data)
        except ValueError:
            return cls(message=data)
        if not isinstance(payload, dict) or not (payload.get("log") or payload.get("message")):
            return cls(message=data)
        try:
            return cls(
                message=payload.get("log") or payload.get("message"),
                timestamp=payload.get("timestamp"),
                severity=payload.get("severity"),
                kind=payload.get("kind"),
                seq=payload.get("seq"),
                stage=payload.get("stage"),
                outcome=payload.get("outcome"),
            )
        except ValueError:
            return cls(message=payload.get("log") or payload.get("message"))


class ShipwrightClient:
    """Submit builds and follow their logs.

    Args:
        api_url: Base URL of the dispatch API.
        gateway_url: WebSocket URL of the gateway endpoint (``.../ws``).
        timeout: HTTP timeout in seconds.
        http_client: Pre-configured client, mostly for tests.
    """

    def __init__(
        self,
        api_url: str = "http://localhost:3000",
        gateway_url: str = "ws://localhost:9000/ws",
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._gateway_url = gateway_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=api_url, timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> ShipwrightClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Dispatch API
    # ------------------------------------------------------------------ #

    async def deploy(
        self,
        repo_url: str,
        output_dir: str = DEFAULT_OUTPUT_DIR,
        build_command: str = DEFAULT_BUILD_COMMAND,
        project_name: str | None = None,
    ) -> DeployHandle:
        """Queue a build of *repo_url*.

        Raises:
            ValidationError: The API rejected the request (HTTP 400).
            LaunchError: The API could not start the build (HTTP 500).
            ShipwrightError: The API was unreachable or answered otherwise.
        """
        body = {
            "repoUrl": repo_url,
            "outputDir": output_dir,
            "buildCommand": build_command,
            "projectName": project_name or generate_slug(),
        }
        resp = await self._request("POST", "/api/project", json=body)
        data = _json(resp).get("data") or {}
        handle = DeployHandle(project_name=data["projectName"], url=data["url"])
        logger.info("deploy_queued", project=handle.project_name, url=handle.url)
        return handle

    async def cancel(self, project_name: str) -> str:
        """Stop a build. Returns ``"cancelled"`` or ``"finished"``."""
        resp = await self._request("DELETE", f"/api/project/{project_name}")
        status: str = _json(resp)["status"]
        return status

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ShipwrightError(f"Dispatch API unreachable: {exc}", code="UNREACHABLE") from exc
        if resp.status_code < 400:
            return resp
        message = _error_message(resp)
        if resp.status_code == 400:
            raise ValidationError(message)
        if resp.status_code == 500:
            raise LaunchError(message)
        raise ShipwrightError(message, status_code=resp.status_code)

    # ------------------------------------------------------------------ #
    # Gateway
    # ------------------------------------------------------------------ #

    async def follow(self, project_name: str) -> AsyncIterator[LogLine]:
        """Yield the build log of *project_name* until its outcome arrives.

        Only lines published after the subscription is acknowledged are
        seen. Iteration also ends if the gateway closes the connection.

        Raises:
            GatewayProtocolError: The gateway refused the subscription.
        """
        topic = log_topic(project_name)
        async with ws_connect(self._gateway_url) as ws:
            await ws.send(json.dumps({"action": "subscribe", "topic": topic}))
            try:
                async for raw in ws:
                    if isinstance(raw, bytes):
                        raw = raw.decode()
                    frame = json.loads(raw)
                    kind = frame.get("type")
                    if kind == "error":
                        raise GatewayProtocolError(frame.get("error", "gateway error"))
                    if kind != "message" or frame.get("topic") != topic:
                        continue
                    line = LogLine.parse(frame.get("data", ""))
                    yield line
                    if line.is_terminal:
                        return
            except websockets.exceptions.ConnectionClosed:
                logger.info("follow_connection_closed", project=project_name)


def _json(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise ShipwrightError("Dispatch API returned invalid JSON", code="BAD_RESPONSE") from exc
    if not isinstance(data, dict):
        raise ShipwrightError("Dispatch API returned an unexpected payload", code="BAD_RESPONSE")
    return data


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return f"HTTP {resp.status_code}"
