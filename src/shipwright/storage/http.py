from __future__ import annotations

import asyncio
from typing import BinaryIO
from urllib.parse import quote

import httpx
import structlog

from shipwright.core.exceptions import StorageError, StorageRejectedError
from shipwright.resilience.retry import RetryPolicy
from shipwright.storage.base import ObjectStore

logger = structlog.get_logger(__name__)


class HttpObjectStore(ObjectStore):
    """Object store speaking path-style HTTP ``PUT`` (S3-compatible endpoints,
    MinIO, or a pre-authorised upload proxy).

    Objects are written to ``{endpoint}/{bucket}/{key}``. Transport errors and
    5xx answers are retried with the configured :class:`RetryPolicy`; 4xx
    answers fail immediately.
    """

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        *,
        api_key: str | None = None,
        timeout: float = 60.0,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._bucket = bucket
        self._api_key = api_key
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._client = http_client
        self._owns_client = http_client is None

    async def connect(self) -> None:
        if self._client is None:
            headers: dict[str, str] = {}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def url_for(self, key: str) -> str:
        return f"{self._endpoint}/{self._bucket}/{quote(key)}"

    async def put(self, key: str, stream: BinaryIO, content_type: str) -> None:
        body = await asyncio.to_thread(stream.read)
        await self._retry_policy.execute(self._put_once, key, body, content_type)

    async def _put_once(self, key: str, body: bytes, content_type: str) -> None:
        if self._client is None:
            raise StorageError("HttpObjectStore not connected. Call connect() first.")
        try:
            resp = await self._client.put(
                self.url_for(key),
                content=body,
                headers={"Content-Type": content_type},
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Upload of {key} failed: {exc}") from exc
        if resp.status_code >= 500:
            raise StorageError(
                f"Upload of {key} failed: HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise StorageRejectedError(
                f"Upload of {key} rejected: HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        logger.debug("object_stored", key=key, bytes=len(body))
