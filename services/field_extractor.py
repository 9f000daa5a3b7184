"""
Field extractor: free text in, listing fields out.

The model only ever sees the message and the fields already known; it never
decides the next step. ``extract`` never raises: any failure means "extracted
nothing" and the conversation simply asks again.
"""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from openai import AsyncOpenAI

from draft_state import ALL_FIELDS, FIELD_ALIASES
from services.openai_client import complete_json, get_openai_client
from utils.error_handling import ExtractionError
from utils.logging_config import PerformanceLogger, logger
from utils.retry import NO_RETRY, RetryPolicy

EXTRACTION_SYSTEM_PROMPT = (
    "You extract structured data about a Pakistani designer clothing item from a seller's text message. "
    "Return ONLY a JSON object. Only include fields you are confident about; omit everything else."
)

EXTRACTION_USER_TEMPLATE = """Current listing has:
{known}

User message: "{message}"

Extract any of these fields if mentioned:
- designer: brand name (Sana Safinaz, Elan, Maria B, Khaadi, Zara Shahjahan, Agha Noor, etc.)
- item_type: what it is (kurta, 3-piece suit, lehnga, saree, etc.)
- pieces_included: what's included (kurta + dupatta + trousers, etc.)
- size: XS, S, M, L, XL or measurements
- condition: new with tags, like new, gently used, used
- asking_price: price in USD as a number (85, not "$85")
- details: flaws, alterations, missing buttons or other notes
- color, material, reference_link

If the user corrects a field, return the corrected value.
If nothing can be extracted, return {{}}"""


@dataclass(frozen=True)
class ExtractorConfig:
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    max_tokens: int = 300
    system_prompt: str = EXTRACTION_SYSTEM_PROMPT
    user_template: str = EXTRACTION_USER_TEMPLATE


class FieldExtractor(ABC):
    @abstractmethod
    async def extract(
        self,
        text: str,
        known_fields: Dict[str, Any],
        config: Optional[ExtractorConfig] = None,
    ) -> Dict[str, Any]:
        """Raw extractor output (field name -> value); ``{}`` when nothing could be extracted."""


def _clean_output(raw: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in raw.items():
        name = FIELD_ALIASES.get(str(key).lower(), str(key).lower())
        if name in ALL_FIELDS and value not in (None, "", [], {}):
            cleaned[name] = value
    return cleaned


class OpenAIFieldExtractor(FieldExtractor):
    def __init__(
        self,
        client_factory: Callable[[], AsyncOpenAI] = get_openai_client,
        retry: RetryPolicy = NO_RETRY,
        default_config: Optional[ExtractorConfig] = None,
    ):
        self.client_factory = client_factory
        self.retry = retry
        self.default_config = default_config or ExtractorConfig()

    async def _call(self, text: str, known_fields: Dict[str, Any], config: ExtractorConfig) -> Dict[str, Any]:
        prompt = config.user_template.format(
            known=json.dumps(known_fields, ensure_ascii=False, indent=2),
            message=text.replace('"', "'"),
        )
        try:
            return await complete_json(
                self.client_factory(),
                model=config.model,
                system_prompt=config.system_prompt,
                user_content=prompt,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            )
        except Exception as e:
            raise ExtractionError(str(e)) from e

    async def extract(
        self,
        text: str,
        known_fields: Dict[str, Any],
        config: Optional[ExtractorConfig] = None,
    ) -> Dict[str, Any]:
        if not text or not text.strip():
            return {}
        cfg = config or self.default_config
        try:
            with PerformanceLogger(logger, "field_extraction", model=cfg.model):
                raw = await self.retry.run(
                    lambda: self._call(text, known_fields, cfg),
                    operation="field_extraction",
                    retry_on=(ExtractionError,),
                )
        except ExtractionError as e:
            logger.warning(f"⚠️ Extraction failed, treating as empty: {e}")
            return {}
        cleaned = _clean_output(raw)
        logger.info(f"🧩 Extracted fields: {sorted(cleaned)}")
        return cleaned
