"""Subscription protocol spoken over the gateway WebSocket.

Client → server (text frames)::

    {"action": "subscribe", "topic": "logs:<project>"}
    {"action": "unsubscribe", "topic": "logs:<project>"}
    "logs:<project>"                       # bare topic, same as subscribe

Server → client::

    {"type": "joined", "topic": ...}
    {"type": "left", "topic": ...}
    {"type": "message", "topic": ..., "data": "<payload as published>"}
    {"type": "error", "error": "..."}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal

from shipwright.core.exceptions import GatewayProtocolError
from shipwright.core.types import project_from_topic

Action = Literal["subscribe", "unsubscribe"]


@dataclass(frozen=True, slots=True)
class ControlRequest:
    action: Action
    topic: str


def _checked_topic(topic: object) -> str:
    if not isinstance(topic, str) or project_from_topic(topic) is None:
        raise GatewayProtocolError(f"Invalid topic: {topic!r}", code="INVALID_TOPIC")
    return topic


def parse_control(raw: str) -> ControlRequest:
    """Decode one client frame.

    Raises:
        GatewayProtocolError: If the frame is not a known request or names a
            topic outside the ``logs:`` namespace.
    """
    try:
        decoded: object = json.loads(raw)
    except ValueError:
        decoded = raw.strip()

    if isinstance(decoded, str):
        return ControlRequest(action="subscribe", topic=_checked_topic(decoded))
    if not isinstance(decoded, dict):
        raise GatewayProtocolError("Request must be an object or a topic string")

    action = decoded.get("action", "subscribe")
    if action not in ("subscribe", "unsubscribe"):
        raise GatewayProtocolError(f"Unknown action: {action!r}", code="UNKNOWN_ACTION")
    return ControlRequest(action=action, topic=_checked_topic(decoded.get("topic")))


def joined_frame(topic: str) -> str:
    return json.dumps({"type": "joined", "topic": topic})


def left_frame(topic: str) -> str:
    return json.dumps({"type": "left", "topic": topic})


def message_frame(topic: str, data: str) -> str:
    return json.dumps({"type": "message", "topic": topic, "data": data})


def error_frame(error: str) -> str:
    return json.dumps({"type": "error", "error": error})
