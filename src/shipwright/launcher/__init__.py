"""Job launchers: translate a JobSpecification into a started build job."""

from shipwright.core.config import LauncherConfig
from shipwright.launcher.base import JobLauncher
from shipwright.launcher.http import HttpJobLauncher
from shipwright.launcher.local import LocalProcessLauncher
from shipwright.launcher.mock import MockJobLauncher


def create_launcher(config: LauncherConfig) -> JobLauncher:
    """Build the launcher selected by ``config.kind``."""
    if config.kind == "local":
        return LocalProcessLauncher(config)
    return HttpJobLauncher(config)


__all__ = [
    "HttpJobLauncher",
    "JobLauncher",
    "LocalProcessLauncher",
    "MockJobLauncher",
    "create_launcher",
]
