"""Dispatch application factory.

Usage::

    from shipwright.dispatch import create_dispatch_app
    from shipwright.launcher import HttpJobLauncher

    app = create_dispatch_app(HttpJobLauncher(LauncherConfig.from_env()))
    # uvicorn.run(app, host="0.0.0.0", port=3000)
"""
from __future__ import annotations

from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shipwright.__version__ import __version__
from shipwright.core.config import DispatchConfig
from shipwright.core.types import LaunchResult
from shipwright.launcher.base import JobLauncher

logger = structlog.get_logger(__name__)


def create_dispatch_app(
    launcher: JobLauncher,
    config: DispatchConfig | None = None,
) -> FastAPI:
    """Create the FastAPI application that accepts build requests.

    The launcher is opened when the application starts and closed when it
    shuts down.

    Args:
        launcher: Backend that starts one build job per request.
        config: Preview URL and CORS settings (defaults when omitted).
    """
    config = config or DispatchConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with launcher:
            logger.info("dispatch_started", launcher=launcher.name)
            yield
        logger.info("dispatch_stopped")

    app = FastAPI(title="Shipwright Dispatch", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.launcher = launcher
    app.state.config = config
    launches: OrderedDict[str, LaunchResult] = OrderedDict()
    app.state.launches = launches

    from shipwright.dispatch.routes import router

    app.include_router(router)
    return app
