"""ObjectStore backed by a Supabase storage bucket.

The supabase client is synchronous; calls run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from supabase import Client, create_client

from livepoll_core.errors import UploadFailed, UploadFailureCause
from livepoll_core.interfaces import ObjectStore

logger = logging.getLogger(__name__)


def _status_code(exc: Exception) -> int | None:
    """Best-effort HTTP status of a storage error (payload is a dict)."""
    detail = exc.args[0] if exc.args else None
    if isinstance(detail, dict):
        raw = detail.get("statusCode") or detail.get("status")
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None
    return None


class SupabaseObjectStore(ObjectStore):
    """Args:
        client: a supabase ``Client`` (service role).
        bucket: storage bucket holding uploaded images.
    """

    def __init__(self, client: Client, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    @classmethod
    def from_credentials(cls, url: str, key: str, bucket: str) -> SupabaseObjectStore:
        return cls(create_client(url, key), bucket)

    def _upload(self, key: str, data: bytes, content_type: str) -> None:
        self._client.storage.from_(self._bucket).upload(
            key,
            data,
            {"content-type": content_type, "upsert": "true"},
        )

    async def write(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(self._upload, key, data, content_type)
        except httpx.TransportError as exc:
            logger.warning("Storage upload of %s failed (network): %s", key, exc)
            raise UploadFailed(str(exc), cause=UploadFailureCause.NETWORK) from exc
        except Exception as exc:
            status = _status_code(exc)
            cause = UploadFailureCause.TOO_LARGE if status == 413 else UploadFailureCause.OTHER
            logger.warning("Storage upload of %s failed (%s): %s", key, status, exc)
            raise UploadFailed(str(exc), cause=cause) from exc
        return key

    def public_url(self, key: str) -> str:
        return self._client.storage.from_(self._bucket).get_public_url(key)
