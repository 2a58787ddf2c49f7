from __future__ import annotations

import asyncio
import os
import shutil
import sys
from pathlib import Path
from typing import Sequence

import structlog

from shipwright.core.config import LauncherConfig
from shipwright.core.exceptions import LaunchError
from shipwright.core.types import ENV_BUCKET, JobSpecification, LaunchResult
from shipwright.launcher.base import JobLauncher

logger = structlog.get_logger(__name__)

# Same contract as the build container's entry script: clone, then hand over
# to the worker in the same process.
_ENTRY_SCRIPT = (
    'git clone --depth 1 -- "$GIT_REPOSITORY__URL" "$SHIPWRIGHT_WORK_DIR" '
    '&& exec "$0" -m shipwright.worker'
)


def default_worker_command() -> list[str]:
    return ["sh", "-c", _ENTRY_SCRIPT, sys.executable]


def _reset_dir(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)


class LocalProcessLauncher(JobLauncher):
    """Run each job as a child process on this machine.

    Meant for development and single-host installs: every project gets its
    own directory below ``config.work_root`` and its own worker process.
    """

    name = "local"

    def __init__(
        self,
        config: LauncherConfig | None = None,
        *,
        command: Sequence[str] | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        self._config = config or LauncherConfig(kind="local")
        self._command = list(command) if command is not None else default_worker_command()
        self._extra_env = dict(extra_env or {})
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._projects: dict[str, str] = {}

    def job_dir(self, project_id: str) -> Path:
        return self._config.work_root / project_id

    async def launch(self, spec: JobSpecification) -> LaunchResult:
        self._prune()
        running = self._projects.get(spec.project_id)
        if running is not None:
            raise LaunchError(
                f"Project {spec.project_id} is already building ({running})",
                code="ALREADY_RUNNING",
                details={"handle": running},
            )
        job_dir = self.job_dir(spec.project_id)
        repo_dir = job_dir / "repo"
        env = {
            **os.environ,
            **self._extra_env,
            **spec.to_env(),
            ENV_BUCKET: self._config.bucket,
            "SHIPWRIGHT_WORK_DIR": str(repo_dir),
        }
        try:
            await asyncio.to_thread(_reset_dir, job_dir)
            process = await asyncio.create_subprocess_exec(
                *self._command,
                cwd=str(job_dir),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise LaunchError(
                f"Could not start local worker: {exc}", code="SPAWN_FAILED"
            ) from exc

        handle = f"local-{process.pid}"
        self._processes[handle] = process
        self._projects[spec.project_id] = handle
        logger.info("job_launched", project=spec.project_id, handle=handle, backend=self.name)
        return LaunchResult(project_id=spec.project_id, handle=handle, backend=self.name)

    async def cancel(self, launch: LaunchResult) -> bool:
        self._prune()
        process = self._processes.get(launch.handle)
        if process is None or process.returncode is not None:
            return False
        try:
            process.terminate()
        except ProcessLookupError:
            return False
        logger.info("job_cancelled", project=launch.project_id, handle=launch.handle)
        return True

    async def close(self) -> None:
        for handle, process in list(self._processes.items()):
            if process.returncode is None:
                logger.info("job_left_running", handle=handle, pid=process.pid)
        self._processes.clear()
        self._projects.clear()

    def returncode(self, handle: str) -> int | None:
        process = self._processes.get(handle)
        return None if process is None else process.returncode

    def _prune(self) -> None:
        """Forget workers that have exited."""
        for handle, process in list(self._processes.items()):
            if process.returncode is not None:
                del self._processes[handle]
        self._projects = {
            project: handle
            for project, handle in self._projects.items()
            if handle in self._processes
        }
