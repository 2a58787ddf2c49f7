"""Artifact stores used by the build worker's publish stage."""

from shipwright.storage.base import ObjectStore, guess_content_type
from shipwright.storage.http import HttpObjectStore
from shipwright.storage.local import LocalObjectStore
from shipwright.storage.memory import InMemoryObjectStore

__all__ = [
    "HttpObjectStore",
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectStore",
    "guess_content_type",
]
