from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Callable

from shipwright.core.exceptions import StorageError
from shipwright.storage.base import ObjectStore


@dataclass(frozen=True, slots=True)
class StoredObject:
    body: bytes
    content_type: str


class InMemoryObjectStore(ObjectStore):
    """Dict-backed store for tests.

    Usage::

        store = InMemoryObjectStore()
        store.fail_when(lambda key: key.endswith("b.js"))   # simulate outages
        ...
        assert store.objects["__outputs/p/index.html"].content_type == "text/html"
    """

    def __init__(self) -> None:
        self.objects: dict[str, StoredObject] = {}
        self.attempts: list[str] = []
        self._should_fail: Callable[[str], bool] | None = None

    def fail_when(self, predicate: Callable[[str], bool]) -> None:
        """Make :meth:`put` raise :class:`StorageError` for keys matching *predicate*."""
        self._should_fail = predicate

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> None:
        self.attempts.append(key)
        if self._should_fail is not None and self._should_fail(key):
            raise StorageError(f"simulated failure storing {key}")
        self.objects[key] = StoredObject(body=stream.read(), content_type=content_type)
