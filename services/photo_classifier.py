"""Vision check for inbound photos: is it clothing, and is a brand tag visible?"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict

from services.openai_client import complete_json, get_openai_client
from utils.logging_config import PerformanceLogger, logger
from utils.retry import NO_RETRY, RetryPolicy

CLASSIFIER_SYSTEM_PROMPT = "You analyze clothing photos for a resale marketplace. Return only valid JSON."

CLASSIFIER_USER_PROMPT = """Look at this photo a seller sent while listing an item.

Respond with JSON only:
{
  "is_clothing": true/false,
  "has_tag": true/false,
  "brand_guess": "brand text on a visible tag or label, or null",
  "description": "one short sentence describing the item"
}

Photos of a brand tag or label on clothing count as clothing. Be lenient with
lighting, angles and backgrounds."""


class PhotoAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_clothing: bool = True
    has_tag: bool = False
    brand_guess: Optional[str] = None
    description: Optional[str] = None


class PhotoClassifier(ABC):
    @abstractmethod
    async def analyze(self, photo_ref: str) -> PhotoAnalysis:
        ...


class OpenAIPhotoClassifier(PhotoClassifier):
    def __init__(
        self,
        model: str = "gpt-4o-mini",
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        retry: RetryPolicy = NO_RETRY,
    ):
        self.model = model
        self.client_factory = client_factory
        self.retry = retry

    async def _call(self, photo_ref: str) -> PhotoAnalysis:
        raw = await complete_json(
            self.client_factory(),
            model=self.model,
            system_prompt=CLASSIFIER_SYSTEM_PROMPT,
            user_content=[
                {"type": "text", "text": CLASSIFIER_USER_PROMPT},
                {"type": "image_url", "image_url": {"url": photo_ref, "detail": "low"}},
            ],
            temperature=0.2,
            max_tokens=150,
        )
        return PhotoAnalysis(**raw)

    async def analyze(self, photo_ref: str) -> PhotoAnalysis:
        with PerformanceLogger(logger, "photo_classification", model=self.model):
            analysis = await self.retry.run(lambda: self._call(photo_ref), operation="photo_classification")
        logger.info(f"🖼️ Photo analysis: clothing={analysis.is_clothing} tag={analysis.has_tag}")
        return analysis
