"""Tests for the gateway's subscription protocol."""
from __future__ import annotations

import json

import pytest

from shipwright.core.exceptions import GatewayProtocolError
from shipwright.gateway.protocol import (
    ControlRequest,
    error_frame,
    joined_frame,
    left_frame,
    message_frame,
    parse_control,
)


def test_parse_subscribe_object() -> None:
    assert parse_control('{"action": "subscribe", "topic": "logs:p1"}') == ControlRequest(
        action="subscribe", topic="logs:p1"
    )


def test_parse_unsubscribe_object() -> None:
    request = parse_control('{"action": "unsubscribe", "topic": "logs:p1"}')
    assert request.action == "unsubscribe"


def test_action_defaults_to_subscribe() -> None:
    assert parse_control('{"topic": "logs:p1"}').action == "subscribe"


@pytest.mark.parametrize("raw", ["logs:p1", '"logs:p1"', "  logs:p1  "])
def test_bare_topic_means_subscribe(raw: str) -> None:
    assert parse_control(raw) == ControlRequest(action="subscribe", topic="logs:p1")


@pytest.mark.parametrize(
    "raw",
    [
        '{"action": "subscribe", "topic": "events:p1"}',
        '{"action": "subscribe"}',
        '{"action": "subscribe", "topic": 7}',
        '{"action": "subscribe", "topic": "logs:*"}',
        '{"action": "publish", "topic": "logs:p1"}',
        "[1, 2]",
        "42",
        "hello",
    ],
)
def test_malformed_requests(raw: str) -> None:
    with pytest.raises(GatewayProtocolError):
        parse_control(raw)


def test_frames() -> None:
    assert json.loads(joined_frame("logs:p1")) == {"type": "joined", "topic": "logs:p1"}
    assert json.loads(left_frame("logs:p1")) == {"type": "left", "topic": "logs:p1"}
    assert json.loads(error_frame("bad")) == {"type": "error", "error": "bad"}
    payload = '{"log": "hi"}'
    assert json.loads(message_frame("logs:p1", payload)) == {
        "type": "message",
        "topic": "logs:p1",
        "data": payload,
    }
