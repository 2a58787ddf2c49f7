from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from shipwright.core.types import JobSpecification, LaunchResult


class JobLauncher(ABC):
    """Abstract base for compute backends that run one build job per request.

    ``launch()`` returns as soon as the backend has accepted the job; it never
    waits for the build. Every failure is reported as
    :class:`~shipwright.core.exceptions.LaunchError`, which callers treat as
    non-retryable.
    """

    name: str = "abstract"

    async def connect(self) -> None:
        """Acquire backend resources. No-op by default."""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""

    @abstractmethod
    async def launch(self, spec: JobSpecification) -> LaunchResult:
        """Start a job for *spec* and return its tracking handle."""

    @abstractmethod
    async def cancel(self, launch: LaunchResult) -> bool:
        """Best-effort stop of a launched job.

        Returns ``True`` if a running job was signalled, ``False`` if it had
        already finished. Cancelling a finished job is not an error.
        """

    async def __aenter__(self) -> JobLauncher:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
