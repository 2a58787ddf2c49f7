"""Cross-process log broker: :class:`LogBroker` and its backends."""

from shipwright.broker.base import BrokerMessage, LogBroker
from shipwright.broker.memory import InMemoryLogBroker
from shipwright.broker.redis import RedisLogBroker

__all__ = ["BrokerMessage", "InMemoryLogBroker", "LogBroker", "RedisLogBroker"]
