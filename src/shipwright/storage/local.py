from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path
from typing import BinaryIO

from shipwright.core.exceptions import StorageError
from shipwright.storage.base import ObjectStore


class LocalObjectStore(ObjectStore):
    """Store artifacts as files below ``root/bucket``.

    The content type of each object is kept in a ``<name>.meta.json``
    sidecar so a static file server can replay it.
    """

    def __init__(self, root: Path | str, bucket: str = "shipwright-artifacts") -> None:
        self._root = (Path(root) / bucket).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        target = (self._root / key).resolve()
        if not target.is_relative_to(self._root):
            raise StorageError(f"Key escapes the store root: {key}")
        return target

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> None:
        target = self.path_for(key)
        try:
            await asyncio.to_thread(self._write, target, stream, content_type)
        except OSError as exc:
            raise StorageError(f"Failed to write {key}: {exc}") from exc

    @staticmethod
    def _write(target: Path, stream: BinaryIO, content_type: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as fh:
            shutil.copyfileobj(stream, fh)
        meta = target.with_name(target.name + ".meta.json")
        meta.write_text(json.dumps({"content_type": content_type}))
