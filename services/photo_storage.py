"""
Durable photo storage.

Gateway media URLs are short-lived, so every accepted photo is downloaded,
re-uploaded to the Supabase ``listing-photos`` bucket and only attached to the
draft once its public URL actually serves the object.
"""
from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx
from supabase import Client, create_client

from utils.error_handling import PhotoError
from utils.logging_config import PerformanceLogger, logger
from utils.retry import RetryExhaustedError, RetryPolicy

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
}


def extension_for(content_type: Optional[str]) -> str:
    return EXTENSIONS.get((content_type or "").split(";")[0].strip().lower(), "jpg")


class PhotoStorage(ABC):
    @abstractmethod
    async def store(self, photo_ref: str, draft_id: str) -> str:
        """Persist the photo and return its durable URL; raises PhotoError on failure."""


class PassthroughPhotoStorage(PhotoStorage):
    """Keeps the inbound reference as-is (local development without Supabase)."""

    async def store(self, photo_ref: str, draft_id: str) -> str:
        return photo_ref


class SupabasePhotoStorage(PhotoStorage):
    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        bucket: str = "listing-photos",
        media_auth: Optional[Tuple[str, str]] = None,
        poll: Optional[RetryPolicy] = None,
        timeout: float = 20.0,
    ):
        self.supabase_url = supabase_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.media_auth = media_auth
        self.poll_policy = poll or RetryPolicy(max_attempts=5, delay_seconds=0.5, backoff=1.5)
        self.timeout = timeout
        self._client: Optional[Client] = None

    def _supabase(self) -> Client:
        if self._client is None:
            self._client = create_client(self.supabase_url, self.service_key)
        return self._client

    async def _download(self, photo_ref: str) -> Tuple[bytes, str]:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            resp = await client.get(photo_ref, auth=self.media_auth)
        if not resp.is_success:
            raise PhotoError(f"download failed with {resp.status_code}", photo_ref=photo_ref)
        return resp.content, resp.headers.get("content-type", "image/jpeg")

    def _upload(self, path: str, data: bytes, content_type: str) -> str:
        bucket = self._supabase().storage.from_(self.bucket)
        bucket.upload(path, data, {"content-type": content_type, "upsert": "true"})
        return bucket.get_public_url(path)

    async def _public_url_ready(self, url: str) -> Optional[str]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.head(url)
        return url if resp.is_success else None

    async def store(self, photo_ref: str, draft_id: str) -> str:
        with PerformanceLogger(logger, "photo_store", draft_id=draft_id):
            try:
                data, content_type = await self._download(photo_ref)
                path = f"listings/{draft_id}/{uuid.uuid4().hex}.{extension_for(content_type)}"
                public_url = await asyncio.to_thread(self._upload, path, data, content_type)
            except PhotoError:
                raise
            except Exception as e:
                raise PhotoError(f"upload failed: {e}", photo_ref=photo_ref) from e

            try:
                url = await self.poll_policy.poll(
                    lambda: self._public_url_ready(public_url),
                    operation="photo_public_url",
                )
            except RetryExhaustedError as e:
                raise PhotoError(str(e), photo_ref=photo_ref) from e
        logger.info(f"📸 Stored photo for draft {draft_id}: {path}")
        return url
