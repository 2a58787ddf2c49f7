from __future__ import annotations

from typing import Any


class ShipwrightError(Exception):
    """Base exception for all Shipwright errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"LAUNCH_REJECTED"``).
        details: Arbitrary key/value context about the error.
        status_code: HTTP-style status code when the error maps onto an API
            response (``None`` when not applicable).
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    @property
    def is_retryable(self) -> bool:
        """Whether the operation that raised this error can be retried."""
        return False


class ConfigurationError(ShipwrightError): ...


class BrokerError(ShipwrightError): ...


class GatewayProtocolError(ShipwrightError): ...


class ValidationError(ShipwrightError):
    """A dispatch request is missing fields or carries unusable values.

    Reported synchronously to the caller; no side effects have happened.
    """

    def __init__(self, message: str = "Missing required fields", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 400)
        super().__init__(message, **kwargs)


class LaunchError(ShipwrightError):
    """The compute backend refused or could not start a job.

    Never retryable within the lifetime of a dispatch request: the caller
    must re-submit.
    """

    def __init__(self, message: str = "Failed to start build", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 500)
        super().__init__(message, **kwargs)

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return False


class StageFailure(ShipwrightError):
    """An install or build stage exited non-zero or ran past its deadline."""

    def __init__(
        self,
        stage: str,
        message: str,
        *,
        exit_code: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(
            message,
            code="STAGE_FAILED",
            details={"stage": stage, "exit_code": exit_code, "timed_out": timed_out},
        )
        self.stage = stage
        self.exit_code = exit_code
        self.timed_out = timed_out


class StorageError(ShipwrightError):
    """Transport-level failure talking to the object store.

    Retryable: a later attempt may succeed.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


class UploadFailure(ShipwrightError):
    """A single artifact could not be published.

    Aggregated by the worker; never aborts sibling uploads.
    """

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message, code="UPLOAD_FAILED", details={"key": key})
        self.key = key


class StorageRejectedError(StorageError):
    """The object store answered but refused the write (4xx).

    Not retryable: the same request will be refused again.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return False
