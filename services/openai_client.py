"""Shared AsyncOpenAI client factory used by the extractor and the photo classifier."""
from __future__ import annotations

import json
from functools import lru_cache
import os
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI:
    """Return a cached AsyncOpenAI client instance."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is not configured")
    return AsyncOpenAI(api_key=api_key)


async def complete_json(
    client: AsyncOpenAI,
    *,
    model: str,
    system_prompt: str,
    user_content: Any,
    temperature: float = 0.2,
    max_tokens: Optional[int] = None,
) -> Dict[str, Any]:
    """One JSON-mode chat completion; raises ValueError when the reply isn't a JSON object."""
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_content},
    ]
    kwargs: Dict[str, Any] = {}
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    resp = await client.chat.completions.create(  # type: ignore[call-overload]
        model=model,
        temperature=temperature,
        response_format={"type": "json_object"},
        messages=messages,
        **kwargs,
    )
    content = resp.choices[0].message.content if resp.choices else "{}"
    parsed = json.loads(content or "{}")
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed
