"""Realtime gateway application factory.

Usage::

    from shipwright.broker import RedisLogBroker
    from shipwright.gateway import create_gateway_app

    app = create_gateway_app(RedisLogBroker("redis://localhost:6379/0"))
    # uvicorn.run(app, host="0.0.0.0", port=9000)
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from shipwright.__version__ import __version__
from shipwright.broker.base import LogBroker
from shipwright.core.config import GatewayConfig
from shipwright.core.exceptions import GatewayProtocolError
from shipwright.gateway.bridge import BrokerBridge
from shipwright.gateway.hub import SubscriptionHub
from shipwright.gateway.protocol import error_frame, parse_control

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def log_socket(websocket: WebSocket) -> None:
    hub: SubscriptionHub = websocket.app.state.hub
    await websocket.accept()
    connection = hub.register(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                request = parse_control(raw)
            except GatewayProtocolError as exc:
                hub.send(connection, error_frame(str(exc)))
                continue
            if request.action == "subscribe":
                hub.join(connection, request.topic)
            else:
                hub.leave(connection, request.topic)
    except WebSocketDisconnect:
        pass
    except RuntimeError:
        # Receiving on a socket the hub already closed.
        if not connection.closed:
            raise
    finally:
        await hub.unregister(connection)
        logger.debug("gateway_disconnected", connection=connection.connection_id)


@router.get("/api/health")
async def health(request: Request) -> dict[str, Any]:
    broker: LogBroker = request.app.state.broker
    hub: SubscriptionHub = request.app.state.hub
    bridge: BrokerBridge = request.app.state.bridge
    return {
        "healthy": bridge.running and await broker.health(),
        "connections": hub.connection_count,
        "topics": hub.topic_count,
    }


def create_gateway_app(
    broker: LogBroker,
    config: GatewayConfig | None = None,
) -> FastAPI:
    """Create the FastAPI application that relays build logs to browsers.

    The broker is connected and the bridge subscribed when the application
    starts; both are torn down, and every client disconnected, on shutdown.
    """
    config = config or GatewayConfig()
    hub = SubscriptionHub(max_pending=config.max_pending, send_timeout=config.send_timeout)
    bridge = BrokerBridge(broker, hub)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with broker:
            await bridge.start()
            logger.info("gateway_started")
            try:
                yield
            finally:
                await bridge.stop()
                await hub.close()
        logger.info("gateway_stopped", evictions=hub.evictions)

    app = FastAPI(title="Shipwright Gateway", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.broker = broker
    app.state.hub = hub
    app.state.bridge = bridge
    app.state.config = config

    app.include_router(router)
    return app
