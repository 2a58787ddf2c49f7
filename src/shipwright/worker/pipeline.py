"""Build worker: the staged pipeline that runs inside a launched job.

``idle → installing → building → publishing → succeeded | failed``

A non-zero exit (or an expired deadline) in install or build ends the run
as failed and no later stage starts. Publishing uploads every output file
even when some fail, and the run is failed iff at least one did. Any
unexpected exception ends the run as crashed. Whatever happens, the last
event on the project's log stream is the outcome.
"""

from __future__ import annotations

import asyncio
import shlex
import signal
import time
from contextlib import aclosing
from pathlib import Path

import structlog

from shipwright.broker.base import LogBroker
from shipwright.core.config import WorkerConfig
from shipwright.core.constants import BuildState, EventKind, Severity
from shipwright.core.exceptions import StageFailure, UploadFailure
from shipwright.core.types import (
    BuildOutcome,
    JobSpecification,
    StageResult,
    UploadResult,
    artifact_key,
)
from shipwright.storage.base import ObjectStore, guess_content_type
from shipwright.worker.emitter import LogEmitter
from shipwright.worker.process import StageProcess

logger = structlog.get_logger(__name__)

STAGE_INSTALL = "install"
STAGE_BUILD = "build"
STAGE_PUBLISH = "publish"

_TRANSITIONS: dict[BuildState, frozenset[BuildState]] = {
    BuildState.IDLE: frozenset({BuildState.INSTALLING, BuildState.FAILED}),
    BuildState.INSTALLING: frozenset({BuildState.BUILDING, BuildState.FAILED}),
    BuildState.BUILDING: frozenset({BuildState.PUBLISHING, BuildState.FAILED}),
    BuildState.PUBLISHING: frozenset({BuildState.SUCCEEDED, BuildState.FAILED}),
}


def build_command_line(runner: str, build_command: str) -> str:
    """Compose the stage-2 shell command.

    With a runner (``npm run``) the user-supplied command is split and each
    word quoted, so it can carry arguments but not shell syntax. Without a
    runner the command is handed to the shell unchanged.
    """
    if not runner.strip():
        return build_command
    try:
        words = shlex.split(build_command)
    except ValueError as exc:
        raise StageFailure(STAGE_BUILD, f"Invalid build command: {exc}") from exc
    return " ".join([runner.strip(), *(shlex.quote(word) for word in words)])


class BuildWorker:
    """Execute one :class:`JobSpecification` against a checked-out repository.

    Args:
        spec: The job to run.
        broker: Where every progress event is published.
        store: Destination of the build output.
        config: Work directory, stage commands and deadline.
    """

    def __init__(
        self,
        spec: JobSpecification,
        *,
        broker: LogBroker,
        store: ObjectStore,
        config: WorkerConfig | None = None,
    ) -> None:
        self._spec = spec
        self._store = store
        self._config = config or WorkerConfig()
        self._emitter = LogEmitter(broker, spec.project_id)
        self._state = BuildState.IDLE
        self._outcome: BuildOutcome | None = None
        self._current: StageProcess | None = None
        self._cancel_requested = False
        self._log = logger.bind(project=spec.project_id)
        self.stages: list[StageResult] = []
        self.uploads: list[UploadResult] = []

    @property
    def state(self) -> BuildState:
        return self._state

    @property
    def outcome(self) -> BuildOutcome | None:
        return self._outcome

    @property
    def output_path(self) -> Path:
        return self._config.work_dir / self._spec.output_dir

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def run(self) -> BuildOutcome:
        """Run the pipeline to completion and publish its outcome."""
        if self._state is not BuildState.IDLE:
            raise RuntimeError("BuildWorker.run() may only be called once")
        try:
            outcome = await self._execute()
        except Exception as exc:  # noqa: BLE001
            self._log.exception("build_crashed")
            self._state = BuildState.CRASHED
            outcome = BuildOutcome.crashed(f"{type(exc).__name__}: {exc}")
        self._outcome = outcome
        await self._emitter.finish(outcome)
        self._log.info("build_finished", status=outcome.status.value, reason=outcome.reason)
        return outcome

    async def cancel(self) -> bool:
        """Best-effort cancellation.

        Returns ``False`` (and does nothing) once the run has finished.
        """
        if self._state.is_terminal:
            return False
        self._cancel_requested = True
        self._log.info("build_cancel_requested", state=self._state.value)
        if self._current is not None:
            await self._current.terminate()
        return True

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #

    async def _execute(self) -> BuildOutcome:
        await self._emitter.emit(
            f"Starting build of {self._spec.repository_url}",
            kind=EventKind.STAGE,
        )
        try:
            self._check_cancelled(STAGE_INSTALL)
            self._transition(BuildState.INSTALLING)
            await self._run_stage(STAGE_INSTALL, self._config.install_command)

            self._transition(BuildState.BUILDING)
            command = build_command_line(self._config.build_runner, self._spec.build_command)
            await self._run_stage(STAGE_BUILD, command)
        except StageFailure as exc:
            return self._fail(str(exc))

        self._transition(BuildState.PUBLISHING)
        return await self._publish()

    async def _run_stage(self, stage: str, command: str) -> StageResult:
        work_dir = self._config.work_dir
        if not work_dir.is_dir():
            raise StageFailure(stage, f"Working directory {work_dir} does not exist")

        await self._emitter.emit(
            f"Running {stage}: {command}", kind=EventKind.STAGE, stage=stage
        )
        self._check_cancelled(stage)
        process = StageProcess(command, cwd=work_dir, timeout=self._config.stage_timeout)
        self._current = process
        started = time.monotonic()
        try:
            async with aclosing(process.lines()) as lines:
                async for line in lines:
                    await self._emitter.emit(
                        line.text,
                        severity=Severity.INFO if line.stream == "stdout" else Severity.WARNING,
                        stage=stage,
                    )
        finally:
            self._current = None

        result = StageResult(
            stage=stage,
            command=command,
            exit_code=process.returncode,
            duration_ms=int((time.monotonic() - started) * 1000),
            timed_out=process.timed_out,
            cancelled=process.cancelled,
        )
        self.stages.append(result)

        self._check_cancelled(stage)
        if result.timed_out:
            raise StageFailure(
                stage,
                f"{stage} timed out after {self._config.stage_timeout:g}s",
                timed_out=True,
            )
        if result.exit_code != 0:
            raise StageFailure(
                stage,
                f"{stage} exited with code {result.exit_code}",
                exit_code=result.exit_code,
            )
        await self._emitter.emit(
            f"{stage.capitalize()} completed in {result.duration_ms / 1000:.1f}s",
            severity=Severity.SUCCESS,
            kind=EventKind.STAGE,
            stage=stage,
        )
        return result

    async def _publish(self) -> BuildOutcome:
        output = self.output_path
        await self._emitter.emit(
            f"Publishing {self._spec.output_dir}",
            kind=EventKind.STAGE,
            stage=STAGE_PUBLISH,
        )
        if not output.is_dir():
            return self._fail(f"Output directory {self._spec.output_dir} does not exist")

        files = sorted(
            path for path in output.rglob("*") if path.is_file() and not path.is_symlink()
        )
        for path in files:
            if self._cancel_requested:
                return self._fail("cancelled")
            self.uploads.append(await self._upload(output, path))

        failed = [result for result in self.uploads if not result.ok]
        if failed:
            return self._fail(f"{len(failed)} of {len(self.uploads)} uploads failed")

        await self._emitter.emit(
            f"Published {len(self.uploads)} files",
            severity=Severity.SUCCESS,
            kind=EventKind.STAGE,
            stage=STAGE_PUBLISH,
        )
        self._transition(BuildState.SUCCEEDED)
        return BuildOutcome.succeeded()

    async def _upload(self, root: Path, path: Path) -> UploadResult:
        relative = path.relative_to(root).as_posix()
        key = artifact_key(self._spec.project_id, relative)
        content_type = guess_content_type(path.name)

        await self._emitter.emit(
            f"Uploading {relative}", kind=EventKind.UPLOAD, stage=STAGE_PUBLISH
        )
        try:
            await self._store_file(key, path, content_type)
        except UploadFailure as exc:
            self._log.warning("upload_failed", key=exc.key, error=str(exc))
            await self._emitter.emit(
                f"Failed to upload {relative}: {exc}",
                severity=Severity.ERROR,
                kind=EventKind.UPLOAD,
                stage=STAGE_PUBLISH,
            )
            return UploadResult(
                key=key, path=relative, content_type=content_type, ok=False, error=str(exc)
            )

        await self._emitter.emit(
            f"Uploaded {relative}",
            severity=Severity.SUCCESS,
            kind=EventKind.UPLOAD,
            stage=STAGE_PUBLISH,
        )
        return UploadResult(key=key, path=relative, content_type=content_type, ok=True)

    async def _store_file(self, key: str, path: Path, content_type: str) -> None:
        try:
            with path.open("rb") as stream:
                await self._store.put(key, stream, content_type)
        except Exception as exc:  # noqa: BLE001
            raise UploadFailure(key, str(exc)) from exc

    # ------------------------------------------------------------------ #
    # State machine
    # ------------------------------------------------------------------ #

    def _transition(self, new_state: BuildState) -> None:
        allowed = _TRANSITIONS.get(self._state, frozenset())
        if new_state not in allowed:
            raise RuntimeError(
                f"illegal build transition {self._state.value} -> {new_state.value}"
            )
        self._log.debug("build_transition", old=self._state.value, new=new_state.value)
        self._state = new_state

    def _fail(self, reason: str) -> BuildOutcome:
        self._transition(BuildState.FAILED)
        return BuildOutcome.failed(reason)

    def _check_cancelled(self, stage: str) -> None:
        if self._cancel_requested:
            raise StageFailure(stage, "cancelled")


async def run_worker(
    spec: JobSpecification,
    *,
    broker: LogBroker,
    store: ObjectStore,
    config: WorkerConfig | None = None,
) -> BuildOutcome:
    """Run a :class:`BuildWorker`, translating SIGTERM/SIGINT into :meth:`BuildWorker.cancel`."""
    worker = BuildWorker(spec, broker=broker, store=store, config=config)
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task[bool]] = set()

    def _on_signal() -> None:
        task = loop.create_task(worker.cancel())
        pending.add(task)
        task.add_done_callback(pending.discard)

    installed: list[int] = []
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, _on_signal)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            pass
    try:
        return await worker.run()
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
