"""Dispatch endpoint: accept build requests and launch build jobs."""

from shipwright.dispatch.app import create_dispatch_app

__all__ = ["create_dispatch_app"]
