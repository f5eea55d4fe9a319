"""
Settings for the leave notification service (pydantic-settings, .env aware).

Every outbound credential is optional. A missing or wrong credential only
takes its own channel out of the rotation; the service still starts and
the recording channel still keeps every message.

    TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN   hosted-api channel
    WHATSAPP_BRIDGE_URL                      native channel (paired session)
    SMTP_HOST / SMTP_FROM_EMAIL              email copies of leave events
    RECORDING_LOG_PATH                       JSON-lines copy of recorded messages

    from backend.app.core.config import settings
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Loaded once per process: environment, then .env, then defaults."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Leave Notification Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Institution (message header / footer) ──
    INSTITUTION_NAME: str = "Gayatri Vidya Parishad College of Engineering for Women"
    INSTITUTION_SHORT_NAME: str = "GVPCEW"

    # ── Hosted messaging API (Twilio-compatible) ──
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: str = "+14155238886"  # WhatsApp sandbox sender
    TWILIO_API_BASE_URL: str = "https://api.twilio.com"

    # ── Native client (WhatsApp-Web pairing bridge) ──
    WHATSAPP_BRIDGE_URL: Optional[str] = None
    WHATSAPP_BRIDGE_POLL_SECONDS: float = 5.0

    # ── Email side-channel (SMTP) ──
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: Optional[str] = None  # falls back to SMTP_USER
    SMTP_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 20.0

    # ── Dispatch ──
    CHANNEL_SEND_TIMEOUT_SECONDS: float = 20.0  # 0 disables the wrapper
    RECORDING_LOG_PATH: Optional[str] = None  # JSON-lines copy of recorded messages
    RECORDING_HISTORY_SIZE: int = 200

    # ── Real-time push ──
    PUSH_RECONNECT_DELAY_SECONDS: float = 3.0  # fixed, no backoff growth

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def hosted_api_configured(self) -> bool:
        return bool(
            (self.TWILIO_ACCOUNT_SID or "").strip()
            and (self.TWILIO_AUTH_TOKEN or "").strip()
        )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
