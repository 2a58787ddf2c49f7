from __future__ import annotations

import asyncio
from fnmatch import fnmatchcase
from typing import AsyncIterator

import structlog

from shipwright.broker.base import BrokerMessage, LogBroker
from shipwright.core.exceptions import BrokerError

logger = structlog.get_logger(__name__)

_Subscription = tuple[str, "asyncio.Queue[BrokerMessage | None]"]


class InMemoryLogBroker(LogBroker):
    """Single-process broker backed by one asyncio queue per subscription.

    Used by the test-suite and by deployments where the gateway and workers
    share an event loop. Topic patterns use :func:`fnmatch.fnmatchcase`, the
    same glob dialect as Redis ``PSUBSCRIBE``. With ``record=True`` every
    published message is also kept in :attr:`published`.

    Usage::

        broker = InMemoryLogBroker()
        await broker.connect()
        stream = await broker.subscribe("logs:*")
        await broker.publish("logs:demo", "hello")
        message = await anext(stream)
    """

    def __init__(self, *, record: bool = False) -> None:
        self._connected = False
        self._record = record
        self._subscriptions: list[_Subscription] = []
        self.published: list[BrokerMessage] = []

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False
        for _, queue in self._subscriptions:
            queue.put_nowait(None)
        self._subscriptions.clear()

    async def health(self) -> bool:
        return self._connected

    async def publish(self, topic: str, data: str) -> int:
        if not self._connected:
            raise BrokerError("InMemoryLogBroker not connected. Call connect() first.")
        message = BrokerMessage(topic=topic, data=data)
        if self._record:
            self.published.append(message)
        delivered = 0
        for pattern, queue in self._subscriptions:
            if fnmatchcase(topic, pattern):
                queue.put_nowait(message)
                delivered += 1
        return delivered

    async def subscribe(self, pattern: str) -> AsyncIterator[BrokerMessage]:
        if not self._connected:
            raise BrokerError("InMemoryLogBroker not connected. Call connect() first.")
        queue: asyncio.Queue[BrokerMessage | None] = asyncio.Queue()
        subscription: _Subscription = (pattern, queue)
        self._subscriptions.append(subscription)
        logger.debug("broker_subscribed", pattern=pattern)
        return self._stream(subscription)

    async def _stream(self, subscription: _Subscription) -> AsyncIterator[BrokerMessage]:
        _, queue = subscription
        try:
            while True:
                message = await queue.get()
                if message is None:
                    break
                yield message
        finally:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def subscriber_count(self) -> int:
        return len(self._subscriptions)
