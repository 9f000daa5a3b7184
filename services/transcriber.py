"""
Voice notes: download the gateway audio and turn it into text for the flow.

A transcript is handled exactly like a typed message. Any failure raises
TranscriptionError and the seller is asked to type instead.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

import httpx
from openai import AsyncOpenAI

from services.openai_client import get_openai_client
from utils.error_handling import TranscriptionError
from utils.logging_config import PerformanceLogger, logger
from utils.retry import NO_RETRY, RetryPolicy

AUDIO_EXTENSIONS = {
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/amr": "amr",
    "audio/wav": "wav",
    "audio/webm": "webm",
}


def is_audio(content_type: Optional[str]) -> bool:
    return (content_type or "").strip().lower().startswith("audio/")


class Transcriber(ABC):
    @abstractmethod
    async def transcribe(self, media_url: str) -> str:
        """Text spoken in the voice note; raises TranscriptionError."""


class OpenAITranscriber(Transcriber):
    def __init__(
        self,
        model: str = "whisper-1",
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        media_auth: Optional[Tuple[str, str]] = None,
        retry: RetryPolicy = NO_RETRY,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_factory = client_factory
        self.model = model
        self.media_auth = media_auth
        self.retry = retry
        self.timeout = timeout
        self.transport = transport

    async def _download(self, media_url: str) -> Tuple[bytes, str]:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True, transport=self.transport) as client:
            resp = await client.get(media_url, auth=self.media_auth)
        if not resp.is_success:
            raise TranscriptionError(f"audio download failed with {resp.status_code}")
        return resp.content, resp.headers.get("content-type", "audio/ogg")

    async def _call(self, data: bytes, content_type: str) -> str:
        ext = AUDIO_EXTENSIONS.get(content_type.split(";")[0].strip().lower(), "ogg")
        try:
            resp = await self.client_factory().audio.transcriptions.create(
                model=self.model,
                file=(f"voice.{ext}", data, content_type),
            )
        except Exception as e:
            raise TranscriptionError(str(e)) from e
        return (getattr(resp, "text", "") or "").strip()

    async def transcribe(self, media_url: str) -> str:
        with PerformanceLogger(logger, "transcription", model=self.model):
            try:
                data, content_type = await self._download(media_url)
            except httpx.HTTPError as e:
                raise TranscriptionError(f"audio download failed: {e}") from e
            text = await self.retry.run(
                lambda: self._call(data, content_type),
                operation="transcription",
                retry_on=(TranscriptionError,),
            )
        if not text:
            raise TranscriptionError("empty transcript")
        logger.info(f"🎙️ Voice note transcribed ({len(text)} chars)")
        return text
