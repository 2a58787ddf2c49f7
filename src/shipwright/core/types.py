from __future__ import annotations

import json
import os
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shipwright.core.constants import (
    DEFAULT_BUILD_COMMAND,
    DEFAULT_OUTPUT_DIR,
    LOG_TOPIC_PREFIX,
    OUTPUT_KEY_PREFIX,
    EventKind,
    OutcomeStatus,
    Severity,
)
from shipwright.core.exceptions import ConfigurationError

# A single DNS label, so ``http://{project}.{domain}`` is always a valid URL.
PROJECT_ID_PATTERN = r"^[A-Za-z0-9_-]{1,63}$"
_PROJECT_ID_RE = re.compile(PROJECT_ID_PATTERN)

# Environment variable names injected into a build job.
ENV_REPOSITORY_URL = "GIT_REPOSITORY__URL"
ENV_OUTPUT_DIR = "GITHUB_OUTPUT_DIR"
ENV_BUILD_COMMAND = "GITHUB_BUILD_COMMAND"
ENV_BUCKET = "S3_BUCKET_NAME"
ENV_PROJECT_ID = "PROJECT_ID"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_project_id(value: str) -> bool:
    """Return ``True`` if *value* is usable as a ProjectIdentifier."""
    return bool(_PROJECT_ID_RE.match(value))


def log_topic(project_id: str) -> str:
    """Broker topic carrying the log stream of *project_id*."""
    return f"{LOG_TOPIC_PREFIX}{project_id}"


def project_from_topic(topic: str) -> str | None:
    """Inverse of :func:`log_topic`; ``None`` if *topic* is not a log topic."""
    if not topic.startswith(LOG_TOPIC_PREFIX):
        return None
    project_id = topic[len(LOG_TOPIC_PREFIX):]
    return project_id if is_valid_project_id(project_id) else None


def artifact_key(project_id: str, relative_path: str) -> str:
    """Object store key for one published output file."""
    return f"{OUTPUT_KEY_PREFIX}/{project_id}/{relative_path}"


class JobSpecification(BaseModel):
    """Everything one build needs. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    repository_url: str = Field(..., min_length=1)
    output_dir: str = Field(default=DEFAULT_OUTPUT_DIR, min_length=1)
    build_command: str = Field(default=DEFAULT_BUILD_COMMAND, min_length=1)
    project_id: str = Field(..., pattern=PROJECT_ID_PATTERN)

    @field_validator("output_dir")
    @classmethod
    def _relative_output_dir(cls, value: str) -> str:
        if value.startswith("/") or ".." in value.split("/"):
            raise ValueError("output_dir must be a path inside the repository")
        return value

    @property
    def topic(self) -> str:
        return log_topic(self.project_id)

    def to_env(self) -> dict[str, str]:
        """Environment mapping injected into the launched job."""
        return {
            ENV_REPOSITORY_URL: self.repository_url,
            ENV_OUTPUT_DIR: self.output_dir,
            ENV_BUILD_COMMAND: self.build_command,
            ENV_PROJECT_ID: self.project_id,
        }

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> JobSpecification:
        """Read the job specification from the job's environment.

        ``GIT_REPOSITORY__URL`` and ``PROJECT_ID`` are required; the output
        directory and build command fall back to ``dist`` and ``build``.

        Raises:
            ConfigurationError: If a required variable is absent or a value
                is invalid.
        """
        env = os.environ if environ is None else environ
        repository_url = env.get(ENV_REPOSITORY_URL, "").strip()
        project_id = env.get(ENV_PROJECT_ID, "").strip()
        if not repository_url:
            raise ConfigurationError(
                f"{ENV_REPOSITORY_URL} environment variable is not set.",
                code="MISSING_REPOSITORY",
            )
        if not project_id:
            raise ConfigurationError(
                f"{ENV_PROJECT_ID} environment variable is not set.",
                code="MISSING_PROJECT_ID",
            )
        try:
            return cls(
                repository_url=repository_url,
                output_dir=env.get(ENV_OUTPUT_DIR) or DEFAULT_OUTPUT_DIR,
                build_command=env.get(ENV_BUILD_COMMAND) or DEFAULT_BUILD_COMMAND,
                project_id=project_id,
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid job specification: {exc}") from exc


class LaunchResult(BaseModel):
    """Acknowledgment that the compute backend accepted a job."""

    project_id: str
    handle: str = Field(..., min_length=1)
    backend: str
    launched_at: datetime = Field(default_factory=_utcnow)


class BuildOutcome(BaseModel):
    """Terminal state of a worker run."""

    model_config = ConfigDict(frozen=True)

    status: OutcomeStatus
    reason: str | None = None

    @classmethod
    def succeeded(cls) -> BuildOutcome:
        return cls(status=OutcomeStatus.SUCCEEDED)

    @classmethod
    def failed(cls, reason: str) -> BuildOutcome:
        return cls(status=OutcomeStatus.FAILED, reason=reason)

    @classmethod
    def crashed(cls, reason: str) -> BuildOutcome:
        return cls(status=OutcomeStatus.CRASHED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        """Process exit status mirroring the outcome (0, 1 or 2)."""
        return {
            OutcomeStatus.SUCCEEDED: 0,
            OutcomeStatus.FAILED: 1,
            OutcomeStatus.CRASHED: 2,
        }[self.status]


class LogEvent(BaseModel):
    """One structured progress event of a build.

    ``seq`` increases strictly within a project's stream. The wire form
    keeps the ``log`` key the browser client reads.
    """

    project_id: str
    seq: int = Field(..., ge=1)
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)
    severity: Severity = Severity.INFO
    kind: EventKind = EventKind.LOG
    stage: str | None = None
    outcome: BuildOutcome | None = None

    @property
    def topic(self) -> str:
        return log_topic(self.project_id)

    @property
    def is_terminal(self) -> bool:
        return self.kind is EventKind.OUTCOME

    def to_wire(self) -> str:
        payload: dict[str, Any] = {
            "log": self.message,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "kind": self.kind.value,
            "seq": self.seq,
        }
        if self.stage is not None:
            payload["stage"] = self.stage
        if self.outcome is not None:
            payload["outcome"] = self.outcome.model_dump(mode="json")
        return json.dumps(payload)

    @classmethod
    def from_wire(cls, project_id: str, data: str) -> LogEvent:
        """Parse a wire payload produced by :meth:`to_wire`.

        Raises:
            ValueError: If *data* is not a structured log payload.
        """
        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError("log payload must be a JSON object")
        return cls(
            project_id=project_id,
            seq=payload["seq"],
            message=payload.get("log") or payload.get("message") or "",
            timestamp=payload["timestamp"],
            severity=payload.get("severity", Severity.INFO),
            kind=payload.get("kind", EventKind.LOG),
            stage=payload.get("stage"),
            outcome=payload.get("outcome"),
        )


class StageResult(BaseModel):
    stage: str
    command: str
    exit_code: int | None = None
    duration_ms: int = 0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


class UploadResult(BaseModel):
    key: str
    path: str
    content_type: str
    ok: bool
    error: str | None = None
