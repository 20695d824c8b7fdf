"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("clinic_booking.config")


class Settings(BaseSettings):
    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    validate_twilio_signature: bool = False

    # Call handling
    public_base_url: str = ""              # e.g. https://example.ngrok.app
    clinic_transfer_number: str = "+1-555-CLINIC"
    tts_voice: str = "alice"
    gather_timeout: int = 10               # seconds to wait for speech to start
    speech_timeout: int = 3                # seconds of silence that end speech
    dial_timeout: int = 30                 # ring timeout for the transfer leg

    # Directory / booking backend: "memory" or "supabase"
    backend: str = "memory"
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    collaborator_timeout_seconds: float = 5.0

    # Session store: "memory" or "redis"
    session_store: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    session_ttl_seconds: int = 3600
    eviction_interval_seconds: int = 60

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def webhook_url(self) -> str:
        """Absolute URL Twilio posts the next utterance to."""
        return f"{self.public_base_url.rstrip('/')}/twilio/voice"

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"AC...", "your-service-role-key", "https://xyz.supabase.co"}

        if self.backend not in {"memory", "supabase"}:
            raise ValueError(f"BACKEND must be 'memory' or 'supabase', got {self.backend!r}")

        if self.session_store not in {"memory", "redis"}:
            raise ValueError(
                f"SESSION_STORE must be 'memory' or 'redis', got {self.session_store!r}"
            )

        # Supabase backend: URL and service key are required
        if self.backend == "supabase":
            if not self.supabase_url or self.supabase_url in _placeholders:
                raise ValueError("SUPABASE_URL is missing or still a placeholder.")
            if (
                not self.supabase_service_role_key
                or self.supabase_service_role_key in _placeholders
            ):
                raise ValueError("SUPABASE_SERVICE_ROLE_KEY is missing or still a placeholder.")
        else:
            warnings.append(
                "BACKEND=memory: appointments are kept in process memory only."
            )

        if self.validate_twilio_signature and not self.twilio_auth_token:
            raise ValueError(
                "VALIDATE_TWILIO_SIGNATURE is on but TWILIO_AUTH_TOKEN is not set."
            )

        if not self.public_base_url:
            warnings.append(
                "PUBLIC_BASE_URL not set. <Gather> will post back to a relative URL."
            )

        # Admin API key — warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        if self.twilio_account_sid in _placeholders:
            warnings.append("TWILIO_ACCOUNT_SID is a placeholder — Twilio calls won't work.")

        return warnings


settings = Settings()
