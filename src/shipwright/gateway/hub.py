"""Topic membership and non-blocking fan-out to WebSocket connections.

Every connection owns a bounded FIFO of outbound frames and a writer task
that drains it. :meth:`SubscriptionHub.publish` only enqueues, so a slow or
stalled client can never delay delivery to anyone else. A connection whose
queue is full, or whose send fails or times out, is evicted: its
memberships are dropped at once and the socket is closed in the background.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Protocol

import structlog

from shipwright.gateway.protocol import joined_frame, left_frame, message_frame

logger = structlog.get_logger(__name__)

CLOSE_GOING_AWAY = 1001
CLOSE_SEND_FAILED = 1011
CLOSE_TRY_AGAIN_LATER = 1013


class ClientSocket(Protocol):
    """The part of a WebSocket the hub writes to."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Connection:
    """One subscriber: its socket, its topics and its outbound queue."""

    def __init__(
        self,
        hub: SubscriptionHub,
        websocket: ClientSocket,
        *,
        max_pending: int,
        send_timeout: float,
    ) -> None:
        self.connection_id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.topics: set[str] = set()
        self.closed = False
        self._hub = hub
        self._send_timeout = send_timeout
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._writer: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        self._writer = asyncio.create_task(
            self._write_loop(), name=f"gateway-writer-{self.connection_id}"
        )

    def offer(self, frame: str) -> bool:
        """Queue *frame* for sending. Returns ``False`` if it cannot be queued."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    async def _write_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await asyncio.wait_for(
                    self.websocket.send_text(frame), timeout=self._send_timeout
                )
            except TimeoutError:
                self._hub.evict(self, CLOSE_SEND_FAILED, "send timed out")
                return
            except Exception as exc:  # noqa: BLE001
                self._hub.evict(self, CLOSE_SEND_FAILED, f"send failed: {exc}")
                return

    async def stop(self) -> None:
        """Stop the writer task without touching the socket."""
        self.closed = True
        writer = self._writer
        if writer is None or writer is asyncio.current_task():
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    async def close(self, code: int) -> None:
        await self.stop()
        try:
            await self.websocket.close(code=code)
        except Exception as exc:  # noqa: BLE001
            logger.debug("gateway_close_failed", connection=self.connection_id, error=str(exc))


class SubscriptionHub:
    """Track which connections follow which topics and fan frames out.

    Args:
        max_pending: Capacity of each connection's outbound queue.
        send_timeout: Seconds a single send may take before the connection
            is considered stalled.
    """

    def __init__(self, *, max_pending: int = 1000, send_timeout: float = 5.0) -> None:
        self._max_pending = max_pending
        self._send_timeout = send_timeout
        self._connections: dict[str, Connection] = {}
        self._members: dict[str, set[Connection]] = {}
        self._closing: set[asyncio.Task[None]] = set()
        self.evictions = 0

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def topic_count(self) -> int:
        return len(self._members)

    def subscribers(self, topic: str) -> int:
        return len(self._members.get(topic, ()))

    def register(self, websocket: ClientSocket) -> Connection:
        connection = Connection(
            self,
            websocket,
            max_pending=self._max_pending,
            send_timeout=self._send_timeout,
        )
        self._connections[connection.connection_id] = connection
        connection.start()
        logger.debug("gateway_connected", connection=connection.connection_id)
        return connection

    def join(self, connection: Connection, topic: str) -> None:
        """Add *connection* to *topic*.

        The acknowledgement is queued before the membership exists, so the
        client always reads it ahead of the topic's first message.
        """
        if connection.closed:
            return
        if not connection.offer(joined_frame(topic)):
            self.evict(connection, CLOSE_TRY_AGAIN_LATER, "outbound queue full")
            return
        connection.topics.add(topic)
        self._members.setdefault(topic, set()).add(connection)
        logger.debug("gateway_joined", connection=connection.connection_id, topic=topic)

    def leave(self, connection: Connection, topic: str) -> bool:
        was_member = self._drop_membership(connection, topic)
        if was_member and not connection.offer(left_frame(topic)):
            self.evict(connection, CLOSE_TRY_AGAIN_LATER, "outbound queue full")
        return was_member

    def send(self, connection: Connection, frame: str) -> None:
        """Queue a direct reply (for example a protocol error)."""
        if not connection.offer(frame) and not connection.closed:
            self.evict(connection, CLOSE_TRY_AGAIN_LATER, "outbound queue full")

    def publish(self, topic: str, data: str) -> int:
        """Queue *data* for every member of *topic*; return how many accepted it."""
        members = self._members.get(topic)
        if not members:
            return 0
        frame = message_frame(topic, data)
        delivered = 0
        for connection in list(members):
            if connection.offer(frame):
                delivered += 1
            else:
                self.evict(connection, CLOSE_TRY_AGAIN_LATER, "outbound queue full")
        return delivered

    async def unregister(self, connection: Connection) -> None:
        """Forget a connection whose socket has gone away. Idempotent."""
        self._forget(connection)
        await connection.stop()

    def evict(self, connection: Connection, code: int, reason: str) -> None:
        if connection.closed and connection.connection_id not in self._connections:
            return
        self._forget(connection)
        connection.closed = True
        self.evictions += 1
        logger.warning(
            "gateway_connection_evicted",
            connection=connection.connection_id,
            code=code,
            reason=reason,
        )
        task = asyncio.create_task(connection.close(code))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def close(self) -> None:
        """Close every connection (server shutdown)."""
        connections = list(self._connections.values())
        for connection in connections:
            self._forget(connection)
        await asyncio.gather(
            *(connection.close(CLOSE_GOING_AWAY) for connection in connections),
            *self._closing,
            return_exceptions=True,
        )

    def _forget(self, connection: Connection) -> None:
        self._connections.pop(connection.connection_id, None)
        for topic in list(connection.topics):
            self._drop_membership(connection, topic)

    def _drop_membership(self, connection: Connection, topic: str) -> bool:
        if topic not in connection.topics:
            return False
        connection.topics.discard(topic)
        members = self._members.get(topic)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._members[topic]
        return True
