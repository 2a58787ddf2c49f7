"""Realtime gateway: relay build log streams to WebSocket subscribers."""

from shipwright.gateway.app import create_gateway_app
from shipwright.gateway.bridge import BrokerBridge
from shipwright.gateway.hub import Connection, SubscriptionHub
from shipwright.gateway.protocol import ControlRequest, parse_control

__all__ = [
    "BrokerBridge",
    "Connection",
    "ControlRequest",
    "SubscriptionHub",
    "create_gateway_app",
    "parse_control",
]
