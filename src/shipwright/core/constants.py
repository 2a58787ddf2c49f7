from __future__ import annotations

from enum import StrEnum


class Severity(StrEnum):
    ERROR = "error"
    SUCCESS = "success"
    WARNING = "warning"
    INFO = "info"


class EventKind(StrEnum):
    LOG = "log"
    STAGE = "stage"
    UPLOAD = "upload"
    OUTCOME = "outcome"


class BuildState(StrEnum):
    IDLE = "idle"
    INSTALLING = "installing"
    BUILDING = "building"
    PUBLISHING = "publishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CRASHED = "crashed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


class OutcomeStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CRASHED = "crashed"


_TERMINAL_STATES = frozenset(
    {BuildState.SUCCEEDED, BuildState.FAILED, BuildState.CRASHED}
)

# Topic namespace shared by workers, broker and gateway.
LOG_TOPIC_PREFIX = "logs:"
LOG_TOPIC_PATTERN = "logs:*"

# Artifact key prefix in the object store.
OUTPUT_KEY_PREFIX = "__outputs"

DEFAULT_OUTPUT_DIR = "dist"
DEFAULT_BUILD_COMMAND = "build"
