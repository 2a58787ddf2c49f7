"""Artifact store abstraction.

Provides :class:`ObjectStore` (abstract base) plus :func:`guess_content_type`,
the extension-based content type inference used for every upload.
"""

from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from typing import Any, BinaryIO

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(path: str) -> str:
    """Infer a content type from *path*'s extension."""
    guessed, _ = mimetypes.guess_type(path)
    return guessed or DEFAULT_CONTENT_TYPE


class ObjectStore(ABC):
    """Opaque key/value artifact store.

    Subclass this to plug in S3, GCS, a CDN origin or a plain directory.
    """

    async def connect(self) -> None:
        """Acquire backend resources. No-op by default."""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""

    @abstractmethod
    async def put(self, key: str, stream: BinaryIO, content_type: str) -> None:
        """Store the bytes read from *stream* under *key*.

        Raises:
            StorageError: On any backend failure.
        """

    async def __aenter__(self) -> ObjectStore:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
