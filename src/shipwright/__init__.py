"""Shipwright: build static sites from Git repositories and stream their logs."""

from shipwright.__version__ import __version__

from shipwright.broker import InMemoryLogBroker, LogBroker, RedisLogBroker
from shipwright.client import (
    DeployHandle,
    LogLine,
    ShipwrightClient,
    generate_slug,
    is_repository_url,
)
from shipwright.core.config import DispatchConfig, GatewayConfig, LauncherConfig, WorkerConfig
from shipwright.core.constants import BuildState, EventKind, OutcomeStatus, Severity
from shipwright.core.exceptions import (
    BrokerError,
    ConfigurationError,
    GatewayProtocolError,
    LaunchError,
    ShipwrightError,
    StageFailure,
    StorageError,
    StorageRejectedError,
    UploadFailure,
    ValidationError,
)
from shipwright.core.types import (
    BuildOutcome,
    JobSpecification,
    LaunchResult,
    LogEvent,
    StageResult,
    UploadResult,
)
from shipwright.dispatch import create_dispatch_app
from shipwright.gateway import create_gateway_app
from shipwright.launcher import (
    HttpJobLauncher,
    JobLauncher,
    LocalProcessLauncher,
    MockJobLauncher,
    create_launcher,
)
from shipwright.storage import (
    HttpObjectStore,
    InMemoryObjectStore,
    LocalObjectStore,
    ObjectStore,
)
from shipwright.worker import BuildWorker, LogEmitter, run_worker

__all__ = [
    "__version__",
    # Client
    "DeployHandle",
    "LogLine",
    "ShipwrightClient",
    "generate_slug",
    "is_repository_url",
    # Config
    "DispatchConfig",
    "GatewayConfig",
    "LauncherConfig",
    "WorkerConfig",
    # Constants
    "BuildState",
    "EventKind",
    "OutcomeStatus",
    "Severity",
    # Exceptions
    "BrokerError",
    "ConfigurationError",
    "GatewayProtocolError",
    "LaunchError",
    "ShipwrightError",
    "StageFailure",
    "StorageError",
    "StorageRejectedError",
    "UploadFailure",
    "ValidationError",
    # Types
    "BuildOutcome",
    "JobSpecification",
    "LaunchResult",
    "LogEvent",
    "StageResult",
    "UploadResult",
    # Broker
    "InMemoryLogBroker",
    "LogBroker",
    "RedisLogBroker",
    # Services
    "create_dispatch_app",
    "create_gateway_app",
    # Launchers
    "HttpJobLauncher",
    "JobLauncher",
    "LocalProcessLauncher",
    "MockJobLauncher",
    "create_launcher",
    # Storage
    "HttpObjectStore",
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectStore",
    # Worker
    "BuildWorker",
    "LogEmitter",
    "run_worker",
]
