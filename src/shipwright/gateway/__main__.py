"""Run the realtime gateway: ``python -m shipwright.gateway``."""

from __future__ import annotations

import uvicorn

from shipwright.broker.redis import RedisLogBroker
from shipwright.core.config import GatewayConfig
from shipwright.gateway.app import create_gateway_app
from shipwright.utils.logging import configure_logging


def main() -> None:
    config = GatewayConfig.from_env()
    configure_logging(config.log_level, json=config.log_json, service="gateway")
    app = create_gateway_app(RedisLogBroker(config.redis_url), config)
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    main()
