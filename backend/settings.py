"""
Configuration for the CRM integrations service.

Values come from the process environment (or a local ``.env``); names are
case-insensitive, so ``GOOGLE_CLIENT_ID`` fills ``google_client_id``.

    from backend.settings import get_settings

    settings = get_settings()
    settings.redirect_uri("gmail")  # https://crm.example.com/integrations/gmail/callback

Routes receive the same cached instance through ``Depends(get_settings)``.
"""

import json
from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ENVIRONMENTS = ("development", "staging", "production", "test")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Runtime ---
    environment: str = Field(default="development", description="One of " + ", ".join(ENVIRONMENTS))
    log_level: str = Field(default="INFO")
    app_origin: str = Field(
        default="http://localhost:3000",
        description="Public origin of the CRM; OAuth redirect URIs are built from it",
    )
    allowed_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="CORS origins as a JSON array or comma-separated list; app_origin when empty",
    )

    # --- Supabase (credential storage and user auth) ---
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = Field(
        default=None,
        description="Service role key; credential rows are written server-side on behalf of users",
    )
    supabase_jwt_secret: Optional[str] = Field(
        default=None,
        description="HS256 secret that signs Supabase access tokens",
    )
    encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key (or passphrase) for OAuth tokens at rest",
    )

    # --- OAuth providers ---
    google_client_id: str = ""
    google_client_secret: str = ""
    microsoft_client_id: str = ""
    microsoft_client_secret: str = ""
    token_refresh_margin_seconds: int = Field(default=300, ge=0)
    auth_state_ttl_seconds: int = Field(default=600, gt=0)
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # --- Outbound quotas per category ---
    rate_limit_api_per_minute: int = Field(default=60, ge=1)
    rate_limit_search_per_minute: int = Field(default=30, ge=1)
    rate_limit_upload_per_minute: int = Field(default=10, ge=1)
    rate_limit_ai_per_minute: int = Field(default=20, ge=1)
    rate_limit_email_per_hour: int = Field(default=50, ge=1)
    rate_limit_sms_per_minute: int = Field(default=60, ge=1)

    # --- Twilio (SMS, WhatsApp, voice) ---
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = Field(default=None, description="E.164 sender for SMS and calls")
    twilio_whatsapp_number: Optional[str] = Field(default=None, description="E.164 WhatsApp sender, without the whatsapp: prefix")

    # --- AI insights ---
    anthropic_api_key: Optional[str] = None
    insights_model: str = "claude-sonnet-4-20250514"

    # --- Error reporting ---
    sentry_dsn: Optional[str] = None
    render_git_commit: Optional[str] = Field(
        default=None,
        description="Release tag for Sentry (RENDER_GIT_COMMIT on Render)",
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if not value:
            return []
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("environment")
    @classmethod
    def known_environment(cls, value: str) -> str:
        value = value.lower()
        if value not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {ENVIRONMENTS}, got {value!r}")
        return value

    @field_validator("app_origin")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def supabase_key(self) -> Optional[str]:
        return self.supabase_service_role_key

    @property
    def allowed_origins_list(self) -> List[str]:
        return self.allowed_origins or [self.app_origin]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    def redirect_uri(self, provider: str) -> str:
        """OAuth callback registered with the provider for this deployment."""
        return f"{self.app_origin}/integrations/{provider}/callback"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings. Tests call ``get_settings.cache_clear()`` after changing the env."""
    return Settings()
