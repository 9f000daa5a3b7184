# tools/clean_price.py

import re
from typing import Any, Optional, Dict


def clean_price(price_text: Optional[str]) -> Dict[str, Optional[int]]:
    """
    Cleans free-form USD price text into whole dollars:
    - "$85" → 85
    - "85 dollars" → 85
    - "1,200" → 1200
    - "1.2k" → 1200
    - "84.99" → 85

    Args:
        price_text: price text to clean

    Returns:
        Dict with the cleaned price under the clean_price key (int or None)
    """
    if not price_text:
        return {"clean_price": None}

    text = price_text.lower().strip()

    multiplier = 1
    if re.search(r"\d\s*k\b", text):
        multiplier = 1_000
        text = re.sub(r"(\d)\s*k\b", r"\1", text)

    match = re.search(r"\d[\d,]*(?:\.\d+)?", text)
    if not match:
        return {"clean_price": None}

    cleaned = match.group(0).replace(",", "")

    try:
        number = round(float(cleaned) * multiplier)
    except ValueError:
        return {"clean_price": None}

    if number <= 0:
        return {"clean_price": None}

    return {"clean_price": number}


def normalize_price_value(value: Any) -> Optional[int]:
    """Normalize an extractor-provided price (number or text) to whole dollars."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = round(value)
        return number if number > 0 else None
    if isinstance(value, str):
        return clean_price(value).get("clean_price")
    return None


def parse_bare_price(text: Optional[str]) -> Optional[int]:
    """Accept a message that is nothing but a price, e.g. "85", "$85", "85 usd"."""
    if not text:
        return None
    if not re.fullmatch(r"\s*\$?\s*\d[\d,]*(?:\.\d+)?\s*(?:k|usd|dollars?|bucks)?\s*", text.lower()):
        return None
    return clean_price(text).get("clean_price")
