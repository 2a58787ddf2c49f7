"""Tests for SubscriptionHub fan-out, ordering and slow-subscriber isolation."""
from __future__ import annotations

import asyncio
import json
from typing import Any

from shipwright.gateway.hub import (
    CLOSE_GOING_AWAY,
    CLOSE_SEND_FAILED,
    CLOSE_TRY_AGAIN_LATER,
    SubscriptionHub,
)


class FakeSocket:
    """WebSocket double recording frames and close codes."""

    def __init__(self, *, stall: bool = False, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.close_code: int | None = None
        self._stall = stall
        self._fail = fail

    async def send_text(self, data: str) -> None:
        if self._fail:
            raise RuntimeError("socket is gone")
        if self._stall:
            await asyncio.Event().wait()
        self.frames.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def messages(self) -> list[str]:
        return [frame["data"] for frame in self.frames if frame["type"] == "message"]


async def _settle(seconds: float = 0.05) -> None:
    await asyncio.sleep(seconds)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


async def test_join_acknowledges_before_messages() -> None:
    hub = SubscriptionHub()
    socket = FakeSocket()
    connection = hub.register(socket)

    hub.join(connection, "logs:p1")
    hub.publish("logs:p1", "first")
    await _settle()

    assert socket.frames[0] == {"type": "joined", "topic": "logs:p1"}
    assert socket.messages() == ["first"]
    assert hub.subscribers("logs:p1") == 1


async def test_fan_out_to_every_member() -> None:
    hub = SubscriptionHub()
    sockets = [FakeSocket() for _ in range(3)]
    for socket in sockets:
        hub.join(hub.register(socket), "logs:p1")

    assert hub.publish("logs:p1", "hello") == 3
    await _settle()
    assert all(socket.messages() == ["hello"] for socket in sockets)


async def test_topics_are_isolated() -> None:
    hub = SubscriptionHub()
    a, b = FakeSocket(), FakeSocket()
    hub.join(hub.register(a), "logs:a")
    hub.join(hub.register(b), "logs:b")

    hub.publish("logs:a", "for a")
    hub.publish("logs:c", "for nobody")
    await _settle()

    assert a.messages() == ["for a"]
    assert b.messages() == []


async def test_per_topic_order_is_preserved() -> None:
    hub = SubscriptionHub()
    socket = FakeSocket()
    hub.join(hub.register(socket), "logs:p1")
    for i in range(200):
        hub.publish("logs:p1", str(i))
    await _settle(0.2)
    assert socket.messages() == [str(i) for i in range(200)]


async def test_leave_stops_delivery() -> None:
    hub = SubscriptionHub()
    socket = FakeSocket()
    connection = hub.register(socket)
    hub.join(connection, "logs:p1")

    assert hub.leave(connection, "logs:p1")
    assert not hub.leave(connection, "logs:p1")
    assert hub.publish("logs:p1", "late") == 0
    await _settle()

    assert socket.frames[-1] == {"type": "left", "topic": "logs:p1"}
    assert hub.topic_count == 0


async def test_unregister_removes_all_memberships() -> None:
    hub = SubscriptionHub()
    connection = hub.register(FakeSocket())
    hub.join(connection, "logs:a")
    hub.join(connection, "logs:b")

    await hub.unregister(connection)
    await hub.unregister(connection)

    assert hub.connection_count == 0
    assert hub.topic_count == 0
    assert connection.closed


# ---------------------------------------------------------------------------
# Eviction
# ---------------------------------------------------------------------------


async def test_stalled_subscriber_is_evicted_without_delaying_others() -> None:
    hub = SubscriptionHub(send_timeout=0.1)
    slow, fast = FakeSocket(stall=True), FakeSocket()
    slow_conn = hub.register(slow)
    hub.join(slow_conn, "logs:p1")
    hub.join(hub.register(fast), "logs:p1")

    for i in range(5):
        hub.publish("logs:p1", str(i))
    await _settle()
    assert fast.messages() == [str(i) for i in range(5)]

    await _settle(0.3)
    assert slow.close_code == CLOSE_SEND_FAILED
    assert slow_conn.closed
    assert hub.subscribers("logs:p1") == 1
    assert hub.evictions == 1


async def test_overflowing_subscriber_is_evicted() -> None:
    hub = SubscriptionHub(max_pending=2, send_timeout=30)
    stuck, healthy = FakeSocket(stall=True), FakeSocket()
    stuck_conn = hub.register(stuck)
    hub.join(stuck_conn, "logs:p1")
    hub.join(hub.register(healthy), "logs:p1")
    await _settle()

    # The writer is blocked on the ack; two frames fill the queue.
    for i in range(4):
        hub.publish("logs:p1", str(i))
    await _settle()

    assert stuck.close_code == CLOSE_TRY_AGAIN_LATER
    assert stuck_conn.closed
    assert hub.connection_count == 1
    assert healthy.messages() == ["0", "1", "2", "3"]


async def test_failing_send_evicts() -> None:
    hub = SubscriptionHub()
    broken = FakeSocket(fail=True)
    connection = hub.register(broken)
    hub.join(connection, "logs:p1")
    await _settle()

    assert broken.close_code == CLOSE_SEND_FAILED
    assert hub.subscribers("logs:p1") == 0
    hub.join(connection, "logs:p1")
    assert hub.subscribers("logs:p1") == 0


async def test_close_disconnects_everyone() -> None:
    hub = SubscriptionHub()
    sockets = [FakeSocket(), FakeSocket()]
    for socket in sockets:
        hub.join(hub.register(socket), "logs:p1")

    await hub.close()

    assert [socket.close_code for socket in sockets] == [CLOSE_GOING_AWAY, CLOSE_GOING_AWAY]
    assert hub.connection_count == 0
    assert hub.topic_count == 0
