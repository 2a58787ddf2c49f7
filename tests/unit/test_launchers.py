"""Tests for the job launchers."""
from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import httpx
import pytest

from shipwright.core.config import LauncherConfig
from shipwright.core.exceptions import LaunchError
from shipwright.core.types import JobSpecification, LaunchResult
from shipwright.launcher import create_launcher
from shipwright.launcher.http import HttpJobLauncher
from shipwright.launcher.local import LocalProcessLauncher, default_worker_command
from shipwright.launcher.mock import MockJobLauncher


# ---------------------------------------------------------------------------
# MockJobLauncher
# ---------------------------------------------------------------------------


async def test_mock_launcher_records_launches(spec: JobSpecification) -> None:
    launcher = MockJobLauncher()
    result = await launcher.launch(spec)
    assert result.handle == "mock-task-1"
    assert result.backend == "mock"
    launcher.assert_launched("demo-site")


async def test_mock_launcher_failure(spec: JobSpecification) -> None:
    launcher = MockJobLauncher(fail_with=LaunchError("no capacity"))
    with pytest.raises(LaunchError):
        await launcher.launch(spec)
    assert launcher.launched == []


async def test_mock_launcher_cancel_semantics(spec: JobSpecification) -> None:
    launcher = MockJobLauncher()
    running = await launcher.launch(spec)
    done = await launcher.launch(spec)
    launcher.mark_finished(done.handle)

    assert await launcher.cancel(running)
    assert not await launcher.cancel(running)
    assert not await launcher.cancel(done)


# ---------------------------------------------------------------------------
# HttpJobLauncher
# ---------------------------------------------------------------------------


def _config(**overrides: Any) -> LauncherConfig:
    values: dict[str, Any] = {
        "backend_url": "http://backend.test",
        "subnets": ["subnet-1", "subnet-2"],
        "security_groups": ["sg-1"],
        "bucket": "sites",
    }
    values.update(overrides)
    return LauncherConfig(**values)


def _http_launcher(handler: Any, **overrides: Any) -> HttpJobLauncher:
    client = httpx.AsyncClient(base_url="http://backend.test", transport=httpx.MockTransport(handler))
    return HttpJobLauncher(_config(**overrides), http_client=client)


def test_http_launcher_requires_url() -> None:
    with pytest.raises(LaunchError):
        HttpJobLauncher(LauncherConfig())


def test_build_request_carries_environment(spec: JobSpecification) -> None:
    launcher = HttpJobLauncher(_config())
    body = launcher.build_request(spec)

    assert body["cluster"] == "build-server-cluster"
    assert body["taskDefinition"] == "build-server-task"
    assert body["launchType"] == "FARGATE"
    assert body["count"] == 1
    override = body["overrides"]["containerOverrides"][0]
    assert override["name"] == "build-server-container"
    env = {item["name"]: item["value"] for item in override["environment"]}
    assert env == {
        "GIT_REPOSITORY__URL": "https://github.com/acme/site",
        "GITHUB_OUTPUT_DIR": "dist",
        "GITHUB_BUILD_COMMAND": "build",
        "PROJECT_ID": "demo-site",
        "S3_BUCKET_NAME": "sites",
    }
    network = body["networkConfiguration"]["awsvpcConfiguration"]
    assert network == {
        "subnets": ["subnet-1", "subnet-2"],
        "securityGroups": ["sg-1"],
        "assignPublicIp": "ENABLED",
    }


async def test_http_launch_returns_task_handle(spec: JobSpecification) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"tasks": [{"taskArn": "arn:task/1"}], "failures": []})

    result = await _http_launcher(handler).launch(spec)

    assert result.handle == "arn:task/1"
    assert result.backend == "http"
    assert requests[0].url.path == "/tasks"
    assert json.loads(requests[0].content)["startedBy"] == "shipwright:demo-site"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"tasks": [], "failures": [{"reason": "RESOURCE:CPU"}]}),
        httpx.Response(200, json={"tasks": []}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_http_launch_failures_raise_launch_error(
    spec: JobSpecification, response: httpx.Response
) -> None:
    launcher = _http_launcher(lambda request: response)
    with pytest.raises(LaunchError):
        await launcher.launch(spec)


async def test_http_launch_unreachable_backend(spec: JobSpecification) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(LaunchError) as exc_info:
        await _http_launcher(handler).launch(spec)
    assert exc_info.value.code == "BACKEND_UNREACHABLE"


async def test_http_launch_requires_connect(spec: JobSpecification) -> None:
    with pytest.raises(LaunchError, match="not connected"):
        await HttpJobLauncher(_config()).launch(spec)


@pytest.mark.parametrize(
    ("response", "expected"),
    [
        (httpx.Response(200, json={"task": {"lastStatus": "RUNNING"}}), True),
        (httpx.Response(200, json={"task": {"lastStatus": "STOPPED"}}), False),
        (httpx.Response(404), False),
        (httpx.Response(409), False),
    ],
)
async def test_http_cancel(response: httpx.Response, expected: bool) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return response

    launch = LaunchResult(project_id="demo-site", handle="arn:task/1", backend="http")
    assert await _http_launcher(handler).cancel(launch) is expected
    assert seen[0].url.path == "/tasks/stop"
    assert json.loads(seen[0].content)["task"] == "arn:task/1"


async def test_http_cancel_rejected() -> None:
    launch = LaunchResult(project_id="demo-site", handle="arn:task/1", backend="http")
    with pytest.raises(LaunchError):
        await _http_launcher(lambda request: httpx.Response(500)).cancel(launch)


# ---------------------------------------------------------------------------
# LocalProcessLauncher
# ---------------------------------------------------------------------------


def test_default_worker_command_uses_this_interpreter() -> None:
    command = default_worker_command()
    assert command[:2] == ["sh", "-c"]
    assert command[-1] == sys.executable
    assert "shipwright.worker" in command[2]


async def _wait_exit(launcher: LocalProcessLauncher, handle: str) -> int:
    for _ in range(100):
        code = launcher.returncode(handle)
        if code is not None:
            return code
        await asyncio.sleep(0.05)
    raise AssertionError("worker process did not exit")


async def test_local_launcher_passes_job_environment(
    spec: JobSpecification, tmp_path: Path
) -> None:
    config = LauncherConfig(kind="local", work_root=tmp_path, bucket="sites")
    command = ["sh", "-c", 'echo "$PROJECT_ID $GITHUB_OUTPUT_DIR $S3_BUCKET_NAME $SHIPWRIGHT_WORK_DIR" > env.txt']
    launcher = LocalProcessLauncher(config, command=command)

    result = await launcher.launch(spec)
    assert result.handle.startswith("local-")
    assert await _wait_exit(launcher, result.handle) == 0

    job_dir = tmp_path / "demo-site"
    assert (job_dir / "env.txt").read_text().split() == [
        "demo-site",
        "dist",
        "sites",
        str(job_dir / "repo"),
    ]
    assert not await launcher.cancel(result)


async def test_local_launcher_cancel_terminates(spec: JobSpecification, tmp_path: Path) -> None:
    config = LauncherConfig(kind="local", work_root=tmp_path)
    launcher = LocalProcessLauncher(config, command=["sleep", "30"])
    result = await launcher.launch(spec)

    assert await launcher.cancel(result)
    assert await _wait_exit(launcher, result.handle) != 0
    await launcher.close()


async def test_local_launcher_refuses_a_project_that_is_still_building(
    spec: JobSpecification, tmp_path: Path
) -> None:
    config = LauncherConfig(kind="local", work_root=tmp_path)
    command = ["sh", "-c", "mkdir -p repo && touch repo/marker && sleep 30"]
    launcher = LocalProcessLauncher(config, command=command)
    first = await launcher.launch(spec)
    marker = tmp_path / "demo-site" / "repo" / "marker"
    for _ in range(100):
        if marker.exists():
            break
        await asyncio.sleep(0.05)

    with pytest.raises(LaunchError) as exc_info:
        await launcher.launch(spec)

    assert exc_info.value.code == "ALREADY_RUNNING"
    assert launcher.returncode(first.handle) is None
    assert marker.exists()
    assert await launcher.cancel(first)
    await _wait_exit(launcher, first.handle)
    await launcher.close()


async def test_local_launcher_forgets_finished_workers(
    spec: JobSpecification, tmp_path: Path
) -> None:
    config = LauncherConfig(kind="local", work_root=tmp_path)
    launcher = LocalProcessLauncher(config, command=["true"])
    first = await launcher.launch(spec)
    assert await _wait_exit(launcher, first.handle) == 0

    second = await launcher.launch(spec)

    assert second.handle != first.handle
    assert launcher.returncode(first.handle) is None
    assert not await launcher.cancel(first)
    await _wait_exit(launcher, second.handle)
    assert not await launcher.cancel(second)
    assert launcher.returncode(second.handle) is None


async def test_local_launcher_spawn_failure(spec: JobSpecification, tmp_path: Path) -> None:
    config = LauncherConfig(kind="local", work_root=tmp_path)
    launcher = LocalProcessLauncher(config, command=["/nonexistent/shipwright-worker"])
    with pytest.raises(LaunchError) as exc_info:
        await launcher.launch(spec)
    assert exc_info.value.code == "SPAWN_FAILED"


def test_create_launcher_selects_backend(tmp_path: Path) -> None:
    assert isinstance(create_launcher(LauncherConfig(kind="local", work_root=tmp_path)), LocalProcessLauncher)
    assert isinstance(create_launcher(_config()), HttpJobLauncher)
