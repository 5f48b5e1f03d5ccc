# session_engine/logic/settings.py

import logging
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Runtime configuration for the session engine."""

    model_config = SettingsConfigDict(
        env_prefix="SESSION_ENGINE_",
        env_file=PROJECT_ROOT / '.env',
        env_file_encoding='utf-8',
        extra='ignore',
        populate_by_name=True,
    )

    # --- Gemini API (boundary classification fallback) ---
    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("SESSION_ENGINE_GEMINI_API_KEY", "GEMINI_API_KEY"),
    )
    enable_ai_fallback: bool = True
    boundary_model_name: str = "gemini-2.5-flash"
    boundary_llm_temperature: float = 0.0
    boundary_llm_timeout_s: float = 10.0
    ai_max_calls_per_run: int = 200 # Beyond this, ambiguous adjacencies are split without asking

    # --- Decision cache ---
    decision_cache_ttl_hours: int = 24
    decision_cache_max_entries: int = 10_000

    # --- Timezone ---
    local_tz: str = "UTC"

    # --- Logging ---
    log_level: str = "INFO"

    @property
    def ai_configured(self) -> bool:
        return self.enable_ai_fallback and bool(self.gemini_api_key) and self.gemini_api_key != "YOUR_API_KEY_HERE"


def get_settings() -> Settings:
    settings = Settings()
    if settings.enable_ai_fallback and not settings.ai_configured:
        log.info("GEMINI_API_KEY is not set. Ambiguous boundaries will use the conservative split.")
    return settings
