"""Tests for BrokerBridge: one broker subscription feeding the hub."""
from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

from shipwright.broker.base import BrokerMessage, LogBroker
from shipwright.broker.memory import InMemoryLogBroker
from shipwright.core.exceptions import BrokerError
from shipwright.gateway.bridge import BrokerBridge
from shipwright.gateway.hub import SubscriptionHub
from shipwright.resilience.retry import RetryPolicy

_NO_WAIT = RetryPolicy(backoff_base=0.0, jitter=False)


class FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None: ...

    def messages(self) -> list[str]:
        return [frame["data"] for frame in self.sent if frame["type"] == "message"]


class FlakyBroker(LogBroker):
    """Broker whose first subscription dies after one message."""

    def __init__(self) -> None:
        self.subscriptions = 0
        self.failing_subscribes = 0
        self._queue: asyncio.Queue[BrokerMessage] = asyncio.Queue()

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def health(self) -> bool:
        return True

    async def publish(self, topic: str, data: str) -> int:
        self._queue.put_nowait(BrokerMessage(topic, data))
        return 1

    async def subscribe(self, pattern: str) -> AsyncIterator[BrokerMessage]:
        if self.failing_subscribes:
            self.failing_subscribes -= 1
            raise BrokerError("still down")
        self.subscriptions += 1
        return self._stream(dies=self.subscriptions == 1)

    async def _stream(self, *, dies: bool) -> AsyncIterator[BrokerMessage]:
        yield await self._queue.get()
        if dies:
            self.failing_subscribes = 2
            raise BrokerError("connection reset")
        while True:
            yield await self._queue.get()


async def test_forwards_broker_messages_to_members(broker: InMemoryLogBroker) -> None:
    hub = SubscriptionHub()
    socket = FakeSocket()
    hub.join(hub.register(socket), "logs:p1")
    bridge = BrokerBridge(broker, hub)

    await bridge.start()
    assert bridge.running
    await broker.publish("logs:p1", "one")
    await broker.publish("logs:other", "ignored")
    await broker.publish("logs:p1", "two")
    await asyncio.sleep(0.05)

    assert socket.messages() == ["one", "two"]
    assert bridge.forwarded == 3
    await bridge.stop()
    assert not bridge.running


async def test_single_subscription_for_many_clients(broker: InMemoryLogBroker) -> None:
    hub = SubscriptionHub()
    for _ in range(5):
        hub.join(hub.register(FakeSocket()), "logs:p1")
    bridge = BrokerBridge(broker, hub)
    await bridge.start()
    await bridge.start()

    assert broker.subscriber_count() == 1
    await bridge.stop()


async def test_resubscribes_after_broker_failure() -> None:
    broker = FlakyBroker()
    hub = SubscriptionHub()
    socket = FakeSocket()
    hub.join(hub.register(socket), "logs:p1")
    bridge = BrokerBridge(broker, hub, retry_policy=_NO_WAIT)

    await bridge.start()
    await broker.publish("logs:p1", "before")
    await asyncio.sleep(0.05)
    await broker.publish("logs:p1", "after")
    await asyncio.sleep(0.05)

    assert socket.messages() == ["before", "after"]
    assert broker.subscriptions == 2
    assert bridge.reconnects == 1
    await bridge.stop()


async def test_stream_end_stops_bridge() -> None:
    broker = InMemoryLogBroker()
    await broker.connect()
    bridge = BrokerBridge(broker, SubscriptionHub())
    await bridge.start()

    await broker.close()
    await asyncio.sleep(0.05)
    assert not bridge.running
    await bridge.stop()
