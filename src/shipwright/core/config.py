from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Literal, TypeVar

from pydantic import BaseModel, Field

from shipwright.core.exceptions import ConfigurationError

_T = TypeVar("_T")

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


def _read(name: str, convert: Callable[[str], _T]) -> _T | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return convert(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}", code="INVALID_ENV"
        ) from exc


def _to_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(raw)


def _to_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _collect(mapping: dict[str, tuple[str, Callable[[str], Any]]]) -> dict[str, Any]:
    """Build model kwargs from ``{field: (ENV_VAR, converter)}``, skipping unset vars."""
    kwargs: dict[str, Any] = {}
    for field, (env_name, convert) in mapping.items():
        value = _read(env_name, convert)
        if value is not None:
            kwargs[field] = value
    return kwargs


def _build(cls: type[BaseModel], kwargs: dict[str, Any]) -> Any:
    try:
        return cls(**kwargs)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid {cls.__name__}: {exc}") from exc


_LOGGING_ENV: dict[str, tuple[str, Callable[[str], Any]]] = {
    "log_level": ("SHIPWRIGHT_LOG_LEVEL", str.upper),
    "log_json": ("SHIPWRIGHT_LOG_JSON", _to_bool),
}


class LauncherConfig(BaseModel):
    """How the dispatch service reaches the compute backend."""

    kind: Literal["http", "local"] = "http"
    backend_url: str | None = None
    api_key: str | None = None
    cluster: str = "build-server-cluster"
    task_definition: str = "build-server-task"
    container_name: str = "build-server-container"
    launch_type: str = "FARGATE"
    subnets: list[str] = Field(default_factory=list)
    security_groups: list[str] = Field(default_factory=list)
    assign_public_ip: bool = True
    bucket: str = "shipwright-artifacts"
    timeout: float = Field(default=30.0, gt=0)
    work_root: Path = Path("./.shipwright/jobs")
    """Parent of per-project working directories (``local`` launcher only)."""

    @classmethod
    def from_env(cls) -> LauncherConfig:
        """Create a :class:`LauncherConfig` from environment variables.

        * ``SHIPWRIGHT_LAUNCHER`` → ``kind`` (``http`` or ``local``)
        * ``SHIPWRIGHT_LAUNCHER_URL`` / ``SHIPWRIGHT_LAUNCHER_API_KEY``
        * ``SHIPWRIGHT_CLUSTER``, ``SHIPWRIGHT_TASK_DEFINITION``,
          ``SHIPWRIGHT_CONTAINER_NAME``, ``SHIPWRIGHT_LAUNCH_TYPE``
        * ``SHIPWRIGHT_SUBNETS``, ``SHIPWRIGHT_SECURITY_GROUPS`` (comma-separated)
        * ``SHIPWRIGHT_ASSIGN_PUBLIC_IP``, ``SHIPWRIGHT_LAUNCHER_TIMEOUT``
        * ``S3_BUCKET_NAME`` → ``bucket``
        * ``SHIPWRIGHT_JOBS_DIR`` → ``work_root``
        """
        kwargs = _collect({
            "kind": ("SHIPWRIGHT_LAUNCHER", str.lower),
            "backend_url": ("SHIPWRIGHT_LAUNCHER_URL", str),
            "api_key": ("SHIPWRIGHT_LAUNCHER_API_KEY", str),
            "cluster": ("SHIPWRIGHT_CLUSTER", str),
            "task_definition": ("SHIPWRIGHT_TASK_DEFINITION", str),
            "container_name": ("SHIPWRIGHT_CONTAINER_NAME", str),
            "launch_type": ("SHIPWRIGHT_LAUNCH_TYPE", str),
            "subnets": ("SHIPWRIGHT_SUBNETS", _to_list),
            "security_groups": ("SHIPWRIGHT_SECURITY_GROUPS", _to_list),
            "assign_public_ip": ("SHIPWRIGHT_ASSIGN_PUBLIC_IP", _to_bool),
            "timeout": ("SHIPWRIGHT_LAUNCHER_TIMEOUT", float),
            "bucket": ("S3_BUCKET_NAME", str),
            "work_root": ("SHIPWRIGHT_JOBS_DIR", Path),
        })
        config: LauncherConfig = _build(cls, kwargs)
        if config.kind == "http" and not config.backend_url:
            raise ConfigurationError(
                "SHIPWRIGHT_LAUNCHER_URL is required for the http launcher",
                code="MISSING_LAUNCHER_URL",
            )
        return config


class DispatchConfig(BaseModel):
    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=3000, ge=1, le=65535)
    preview_domain: str = "localhost"
    preview_scheme: Literal["http", "https"] = "http"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    max_tracked_launches: int = Field(default=10_000, ge=1)
    """How many launches are remembered for cancellation, oldest dropped first."""
    log_level: LogLevel = "INFO"
    log_json: bool = True

    def preview_url(self, project_id: str) -> str:
        """Client-facing URL of a deployed project; a pure function of its id."""
        return f"{self.preview_scheme}://{project_id}.{self.preview_domain}"

    @classmethod
    def from_env(cls) -> DispatchConfig:
        kwargs = _collect({
            "host": ("SHIPWRIGHT_HOST", str),
            "port": ("SHIPWRIGHT_PORT", int),
            "preview_domain": ("SHIPWRIGHT_PREVIEW_DOMAIN", str),
            "preview_scheme": ("SHIPWRIGHT_PREVIEW_SCHEME", str.lower),
            "cors_origins": ("SHIPWRIGHT_CORS_ORIGINS", _to_list),
            "max_tracked_launches": ("SHIPWRIGHT_MAX_TRACKED_LAUNCHES", int),
            **_LOGGING_ENV,
        })
        config: DispatchConfig = _build(cls, kwargs)
        return config


class WorkerConfig(BaseModel):
    """Runtime settings of the build worker (the job spec itself is separate)."""

    work_dir: Path = Path("/app/repo")
    install_command: str = "npm install"
    build_runner: str = "npm run"
    stage_timeout: float = Field(default=1800.0, gt=0)
    bucket: str = "shipwright-artifacts"
    store_url: str | None = None
    store_api_key: str | None = None
    store_dir: Path = Path("./.shipwright/artifacts")
    redis_url: str = "redis://localhost:6379/0"
    log_level: LogLevel = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> WorkerConfig:
        kwargs = _collect({
            "work_dir": ("SHIPWRIGHT_WORK_DIR", Path),
            "install_command": ("SHIPWRIGHT_INSTALL_COMMAND", str),
            "build_runner": ("SHIPWRIGHT_BUILD_RUNNER", str),
            "stage_timeout": ("SHIPWRIGHT_STAGE_TIMEOUT", float),
            "bucket": ("S3_BUCKET_NAME", str),
            "store_url": ("SHIPWRIGHT_STORE_URL", str),
            "store_api_key": ("SHIPWRIGHT_STORE_API_KEY", str),
            "store_dir": ("SHIPWRIGHT_STORE_DIR", Path),
            "redis_url": ("SHIPWRIGHT_REDIS_URL", str),
            **_LOGGING_ENV,
        })
        # An explicitly empty runner means "run the build command as-is".
        if os.environ.get("SHIPWRIGHT_BUILD_RUNNER") == "":
            kwargs["build_runner"] = ""
        config: WorkerConfig = _build(cls, kwargs)
        return config


class GatewayConfig(BaseModel):
    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=9000, ge=1, le=65535)
    redis_url: str = "redis://localhost:6379/0"
    send_timeout: float = Field(default=5.0, gt=0)
    max_pending: int = Field(default=1000, ge=1)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: LogLevel = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> GatewayConfig:
        kwargs = _collect({
            "host": ("SHIPWRIGHT_HOST", str),
            "port": ("SHIPWRIGHT_PORT", int),
            "redis_url": ("SHIPWRIGHT_REDIS_URL", str),
            "send_timeout": ("SHIPWRIGHT_SEND_TIMEOUT", float),
            "max_pending": ("SHIPWRIGHT_MAX_PENDING", int),
            "cors_origins": ("SHIPWRIGHT_CORS_ORIGINS", _to_list),
            **_LOGGING_ENV,
        })
        config: GatewayConfig = _build(cls, kwargs)
        return config
