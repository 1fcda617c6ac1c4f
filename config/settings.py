"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. Engine-specific
settings use the ``REDRESSAL_`` prefix; infrastructure settings use their
canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the redressal service.

    Environment variables are loaded from a ``.env`` file when present.
    App-specific keys are prefixed with ``REDRESSAL_``; infra keys use
    their standard names (configured via ``validation_alias``).
    """

    model_config = SettingsConfigDict(
        env_prefix="REDRESSAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")

    # ── Admin API Key ──────────────────────────────────────────────────
    admin_api_key: str = Field(default="", validation_alias="ADMIN_API_KEY")

    # ── CORS ───────────────────────────────────────────────────────────
    cors_origins: str = Field(default="", validation_alias="CORS_ORIGINS")

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Persistence ────────────────────────────────────────────────────
    persistence_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    persistence_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Notifications ──────────────────────────────────────────────────
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Deadline policy (days) ─────────────────────────────────────────
    authority_response_days: int = Field(default=3, ge=1)
    citizen_auto_close_grace_days: int = Field(default=7, ge=1)

    # ── Escalation sweep ───────────────────────────────────────────────
    sweep_interval_seconds: int = Field(default=3_600, ge=1)  # hourly
    enable_auto_sweep: bool = True

    # ── Vertex AI / Gemini (filing-time categorization) ────────────────
    llm_categorization_enabled: bool = False
    gcp_project_id: str = Field(default="", validation_alias="GCP_PROJECT_ID")
    vertex_ai_model: str = Field(default="gemini-2.0-flash", validation_alias="VERTEX_AI_MODEL")
    vertex_ai_location: str = Field(default="asia-south1", validation_alias="VERTEX_AI_LOCATION")

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Module-level singleton -- import ``settings`` from the app entry point.
settings = Settings()
