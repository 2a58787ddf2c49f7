from __future__ import annotations

from shipwright.core.types import JobSpecification, LaunchResult
from shipwright.launcher.base import JobLauncher


class MockJobLauncher(JobLauncher):
    """In-memory launcher for testing.

    Usage::

        launcher = MockJobLauncher()
        result = await launcher.launch(spec)
        assert launcher.launched == [spec]

        failing = MockJobLauncher(fail_with=LaunchError("no capacity"))
    """

    name = "mock"

    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.launched: list[JobSpecification] = []
        self.cancelled: list[str] = []
        self.finished: set[str] = set()
        self._counter = 0

    async def launch(self, spec: JobSpecification) -> LaunchResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.launched.append(spec)
        self._counter += 1
        return LaunchResult(
            project_id=spec.project_id,
            handle=f"mock-task-{self._counter}",
            backend=self.name,
        )

    async def cancel(self, launch: LaunchResult) -> bool:
        if launch.handle in self.finished or launch.handle in self.cancelled:
            return False
        self.cancelled.append(launch.handle)
        return True

    def mark_finished(self, handle: str) -> None:
        self.finished.add(handle)

    def assert_launched(self, project_id: str) -> None:
        projects = [spec.project_id for spec in self.launched]
        assert project_id in projects, f"Expected launch of {project_id!r}, got: {projects}"

    def reset(self) -> None:
        self.launched.clear()
        self.cancelled.clear()
        self.finished.clear()
        self.fail_with = None

