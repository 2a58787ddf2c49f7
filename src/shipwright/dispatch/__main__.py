"""Run the dispatch API: ``python -m shipwright.dispatch``."""

from __future__ import annotations

import uvicorn

from shipwright.core.config import DispatchConfig, LauncherConfig
from shipwright.dispatch.app import create_dispatch_app
from shipwright.launcher import create_launcher
from shipwright.utils.logging import configure_logging


def main() -> None:
    config = DispatchConfig.from_env()
    configure_logging(config.log_level, json=config.log_json, service="dispatch")
    app = create_dispatch_app(create_launcher(LauncherConfig.from_env()), config)
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    main()
