"""Small text helpers for inbound SMS parsing."""
import re
from datetime import datetime
from typing import Any, List, Optional

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

AFFIRMATIVE = {"yes", "y", "yeah", "yep", "yup", "sure", "ok", "okay", "haan", "ji"}
NEGATIVE = {"no", "n", "nope", "nah", "nahi"}

GLOBAL_COMMANDS = {
    "help": "HELP",
    "?": "HELP",
    "stop": "STOP",
    "unsubscribe": "STOP",
    "start": "START",
    "subscribe": "START",
    "menu": "MENU",
    "home": "MENU",
    "logout": "LOGOUT",
    "log out": "LOGOUT",
    "sign out": "LOGOUT",
}

SELL_KEYWORDS = ("sell", "selling", "consign", "list")

STATUS_PHRASES = (
    "status",
    "what did i",
    "what do i have",
    "show me",
    "what have i",
    "so far",
    "summary",
    "where am i",
)

SKIP_PHRASES = {"skip", "none", "no", "n/a", "na", "nothing", "nope"}


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Normalize to E.164; bare 10-digit numbers are assumed to be North American."""
    if not phone:
        return None
    cleaned = re.sub(r"[^\d+]", "", phone.replace("whatsapp:", ""))
    if not cleaned:
        return None
    if not cleaned.startswith("+"):
        if len(cleaned) == 10:
            cleaned = "+1" + cleaned
        elif len(cleaned) == 11 and cleaned.startswith("1"):
            cleaned = "+" + cleaned
        else:
            cleaned = "+" + cleaned
    return cleaned


def phone_variants(phone: str) -> List[str]:
    """Formats a phone may have been stored under (as-is, digits, last 10, +digits, +1 last 10)."""
    digits = re.sub(r"\D", "", phone or "")
    formats = [phone, digits, digits[-10:], "+" + digits, "+1" + digits[-10:]]
    seen: List[str] = []
    for f in formats:
        if f and f not in seen and f != "+" and f != "+1":
            seen.append(f)
    return seen


def is_valid_email(text: Optional[str]) -> bool:
    return bool(text) and bool(EMAIL_RE.match(text.strip()))


def normalize_email(text: str) -> str:
    return text.strip().lower()


def normalize_text(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def is_affirmative(text: Optional[str]) -> bool:
    return normalize_text(text) in AFFIRMATIVE


def is_negative(text: Optional[str]) -> bool:
    return normalize_text(text) in NEGATIVE


def get_global_command(text: Optional[str]) -> Optional[str]:
    return GLOBAL_COMMANDS.get(normalize_text(text))


def is_status_question(text: Optional[str]) -> bool:
    lowered = normalize_text(text)
    return bool(lowered) and any(phrase in lowered for phrase in STATUS_PHRASES)


def is_skip(text: Optional[str]) -> bool:
    return normalize_text(text) in SKIP_PHRASES


def detect_sell_intent(text: Optional[str]) -> Optional[str]:
    """
    Return ``""`` when the message is a bare sell command, the full message when it
    is a sell command that already carries item details, None otherwise.
    """
    lowered = normalize_text(text)
    if not lowered:
        return None
    if lowered in SELL_KEYWORDS or lowered == "1":
        return ""
    words = re.findall(r"[a-z']+", lowered)
    if words and words[0] in SELL_KEYWORDS:
        return (text or "").strip()
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp as returned by PostgREST ("...Z" included)."""
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
