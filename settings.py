"""
Runtime configuration, read once from the environment (.env supported).
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    port: int = 8000
    log_level: str = "INFO"
    log_json: bool = False

    supabase_url: str = ""
    supabase_service_key: str = ""
    storage_bucket: str = "listing-photos"

    openai_api_key: str = ""
    extraction_model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"

    catalog_api_url: str = ""
    catalog_api_key: str = ""

    # Twilio media URLs need basic auth to download
    media_account_sid: str = ""
    media_auth_token: str = ""

    auth_attempts_per_hour: int = 10
    email_attempt_limit: int = 3
    session_max_age_days: int = 30
    processed_id_limit: int = 100
    confusion_threshold: int = 3

    collaborator_attempts: int = 3
    collaborator_delay_seconds: float = 1.0
    photo_poll_attempts: int = 5
    photo_poll_delay_seconds: float = 0.5

    rate_limit_per_minute: int = 30

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        load_dotenv(env_file)
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            port=_int_env("PORT", 8000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes"),
            supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY", ""),
            storage_bucket=os.getenv("SUPABASE_PHOTO_BUCKET", "listing-photos").strip("/"),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            extraction_model=os.getenv("EXTRACTION_MODEL", "gpt-4o-mini"),
            vision_model=os.getenv("VISION_MODEL", "gpt-4o-mini"),
            transcription_model=os.getenv("TRANSCRIPTION_MODEL", "whisper-1"),
            catalog_api_url=os.getenv("CATALOG_API_URL", "").rstrip("/"),
            catalog_api_key=os.getenv("CATALOG_API_KEY", ""),
            media_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            media_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            auth_attempts_per_hour=_int_env("AUTH_ATTEMPTS_PER_HOUR", 10),
            email_attempt_limit=_int_env("EMAIL_ATTEMPT_LIMIT", 3),
            session_max_age_days=_int_env("SESSION_MAX_AGE_DAYS", 30),
            processed_id_limit=_int_env("PROCESSED_ID_LIMIT", 100),
            confusion_threshold=_int_env("CONFUSION_THRESHOLD", 3),
            collaborator_attempts=_int_env("COLLABORATOR_ATTEMPTS", 3),
            collaborator_delay_seconds=_float_env("COLLABORATOR_DELAY_SECONDS", 1.0),
            photo_poll_attempts=_int_env("PHOTO_POLL_ATTEMPTS", 5),
            photo_poll_delay_seconds=_float_env("PHOTO_POLL_DELAY_SECONDS", 0.5),
            rate_limit_per_minute=_int_env("RATE_LIMIT_PER_MINUTE", 30),
        )
