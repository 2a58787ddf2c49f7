"""Container entrypoint: ``python -m shipwright.worker``.

Reads the job from the environment, runs the pipeline and exits with the
outcome's status (0 succeeded, 1 failed, 2 crashed).
"""

from __future__ import annotations

import asyncio
import os
import sys

import structlog

from shipwright.broker.redis import RedisLogBroker
from shipwright.core.config import WorkerConfig
from shipwright.core.exceptions import BrokerError, ConfigurationError
from shipwright.core.types import (
    ENV_PROJECT_ID,
    BuildOutcome,
    JobSpecification,
    is_valid_project_id,
)
from shipwright.storage.base import ObjectStore
from shipwright.storage.http import HttpObjectStore
from shipwright.storage.local import LocalObjectStore
from shipwright.utils.logging import configure_logging
from shipwright.worker.emitter import LogEmitter
from shipwright.worker.pipeline import run_worker

logger = structlog.get_logger(__name__)


def build_store(config: WorkerConfig) -> ObjectStore:
    if config.store_url:
        return HttpObjectStore(config.store_url, config.bucket, api_key=config.store_api_key)
    return LocalObjectStore(config.store_dir, config.bucket)


async def _report_misconfiguration(broker: RedisLogBroker, error: ConfigurationError) -> None:
    project_id = os.environ.get(ENV_PROJECT_ID, "").strip()
    if not is_valid_project_id(project_id):
        return
    await LogEmitter(broker, project_id).finish(BuildOutcome.failed(str(error)))


async def run_from_env() -> int:
    try:
        config = WorkerConfig.from_env()
    except ConfigurationError as exc:
        configure_logging(service="worker")
        logger.error("worker_misconfigured", error=str(exc))
        return 1
    configure_logging(config.log_level, json=config.log_json, service="worker")

    broker = RedisLogBroker(config.redis_url)
    try:
        await broker.connect()
    except BrokerError as exc:
        # The build still runs; its events are dropped.
        logger.warning("broker_unavailable", error=str(exc))

    try:
        try:
            spec = JobSpecification.from_env()
        except ConfigurationError as exc:
            logger.error("worker_misconfigured", error=str(exc))
            await _report_misconfiguration(broker, exc)
            return 1

        async with build_store(config) as store:
            outcome = await run_worker(spec, broker=broker, store=store, config=config)
        return outcome.exit_code
    finally:
        await broker.close()


def main() -> None:
    sys.exit(asyncio.run(run_from_env()))


if __name__ == "__main__":
    main()
