from __future__ import annotations

from typing import Any, AsyncIterator

import redis.asyncio as aioredis
import structlog
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from shipwright.broker.base import BrokerMessage, LogBroker
from shipwright.core.exceptions import BrokerError

logger = structlog.get_logger(__name__)


def _open_client(url: str) -> aioredis.Redis:
    """Create the Redis client.  Isolated for easy mocking in tests."""
    return aioredis.from_url(url, decode_responses=True)


class RedisLogBroker(LogBroker):
    """Log broker on Redis ``PUBLISH`` / ``PSUBSCRIBE``.

    Redis pub/sub has exactly the delivery contract the log stream needs:
    fire-and-forget, no retention, per-connection ordering. Each call to
    :meth:`subscribe` opens its own pub/sub connection, so the gateway holds
    exactly one regardless of how many clients are watching.
    """

    def __init__(self, url: str = "redis://localhost:6379/0") -> None:
        self._url = url
        self._client: aioredis.Redis | None = None
        self._pubsubs: list[PubSub] = []
        self._closed = False

    @property
    def _redis(self) -> aioredis.Redis:
        if self._client is None:
            raise BrokerError("RedisLogBroker not connected. Call connect() first.")
        return self._client

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        self._closed = False
        self._client = _open_client(self._url)
        try:
            await self._client.ping()
        except RedisError as exc:
            await self._client.aclose()
            self._client = None
            raise BrokerError(f"Cannot reach Redis at {self._url}: {exc}") from exc
        logger.info("broker_connected", backend="redis")

    async def close(self) -> None:
        self._closed = True
        pubsubs, self._pubsubs = self._pubsubs, []
        for pubsub in pubsubs:
            try:
                await pubsub.aclose()
            except RedisError as exc:
                logger.warning("broker_pubsub_close_failed", error=str(exc))
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def health(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    # ------------------------------------------------------------------ #
    # Pub/sub primitives
    # ------------------------------------------------------------------ #

    async def publish(self, topic: str, data: str) -> int:
        try:
            receivers: int = await self._redis.publish(topic, data)
        except RedisError as exc:
            raise BrokerError(f"Failed to publish on {topic}: {exc}") from exc
        return receivers

    async def subscribe(self, pattern: str) -> AsyncIterator[BrokerMessage]:
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.psubscribe(pattern)
        except RedisError as exc:
            await pubsub.aclose()
            raise BrokerError(f"Failed to subscribe to {pattern}: {exc}") from exc
        self._pubsubs.append(pubsub)
        logger.info("broker_subscribed", pattern=pattern)
        return self._stream(pubsub)

    async def _stream(self, pubsub: PubSub) -> AsyncIterator[BrokerMessage]:
        try:
            async for raw in pubsub.listen():
                message = _to_message(raw)
                if message is not None:
                    yield message
        except RedisError as exc:
            if self._closed:
                return
            raise BrokerError(f"Broker subscription lost: {exc}") from exc
        finally:
            if pubsub in self._pubsubs:
                self._pubsubs.remove(pubsub)
                await pubsub.aclose()


def _to_message(raw: dict[str, Any] | None) -> BrokerMessage | None:
    if not raw or raw.get("type") not in ("pmessage", "message"):
        return None
    data = raw.get("data")
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    channel = raw.get("channel")
    if isinstance(channel, bytes):
        channel = channel.decode("utf-8", errors="replace")
    return BrokerMessage(topic=str(channel), data=str(data))
