from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator


@dataclass(frozen=True, slots=True)
class BrokerMessage:
    """One message delivered by a pattern subscription."""

    topic: str
    data: str


class LogBroker(ABC):
    """Cross-process publish/subscribe relay keyed by topic.

    Delivery is at-most-once: a message published while nobody is subscribed
    to a matching pattern is dropped. Messages from one publisher on one topic
    reach every subscriber in publish order.

    ``subscribe()`` registers the subscription before it returns, so a caller
    that awaits it is guaranteed to see every message published afterwards.
    The returned iterator never ends on its own; it stops when the broker is
    closed.
    """

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def health(self) -> bool: ...

    # ------------------------------------------------------------------ #
    # Pub/sub primitives
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def publish(self, topic: str, data: str) -> int:
        """Publish *data* on *topic*; return how many subscriptions received it."""

    @abstractmethod
    async def subscribe(self, pattern: str) -> AsyncIterator[BrokerMessage]:
        """Subscribe to every topic matching the glob *pattern*."""

    async def __aenter__(self) -> LogBroker:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
