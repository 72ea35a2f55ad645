"""Application configuration and settings management."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent

DEFAULT_FALLBACK_REPLY = (
    "The concierge is looking after other guests right now. Please try again in a moment."
)


class AppSettings(BaseSettings):
    """Runtime configuration for the concierge backend."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )

    # Chat completions provider (OpenAI-compatible streaming endpoint).
    llm_api_key: Optional[str] = Field(default=None, alias="LLM_API_KEY")
    llm_base_url: str = Field(default="https://api.deepseek.com", alias="LLM_BASE_URL")
    llm_model: str = Field(default="deepseek-chat", alias="LLM_MODEL")
    llm_temperature: float = Field(default=1.0, alias="LLM_TEMPERATURE")
    request_timeout_s: float = Field(default=60.0, alias="REQUEST_TIMEOUT_S")
    stream_deadline_s: Optional[float] = Field(default=None, alias="STREAM_DEADLINE_S")
    provider_max_attempts: int = Field(default=2, alias="PROVIDER_MAX_ATTEMPTS")
    fallback_reply: str = Field(default=DEFAULT_FALLBACK_REPLY, alias="FALLBACK_REPLY")

    # Edge relay (server-held Gemini credential).
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    relay_model: str = Field(default="gemini-2.5-flash", alias="RELAY_MODEL")
    relay_temperature: float = Field(default=1.0, alias="RELAY_TEMPERATURE")

    # Prompt building.
    low_stock_threshold: int = Field(default=10, alias="LOW_STOCK_THRESHOLD")
    recent_order_limit: int = Field(default=3, alias="RECENT_ORDER_LIMIT")

    catalog_path: Path = Field(default=BASE_DIR / "data" / "catalog.json", alias="CATALOG_PATH")
    sessions_storage_dir: Path = Field(
        default=BASE_DIR / "data" / "sessions", alias="SESSIONS_STORAGE_DIR"
    )
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    # Server runner.
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, ge=1, le=65535, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    @validator("llm_base_url", pre=True)
    def _normalise_base_url(cls, value: Any) -> str:
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @validator("relay_model", pre=True)
    def _normalise_relay_model(cls, value: Any) -> str:
        if isinstance(value, str):
            return value.replace("models/", "").replace("tunedModels/", "")
        return value

    @validator("provider_max_attempts")
    def _at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)

    @validator("catalog_path", "sessions_storage_dir", pre=True)
    def _resolve_path(cls, value: Any) -> Path:
        path = Path(value)
        if not path.is_absolute():
            path = (BASE_DIR / path).resolve()
        return path

    def as_dict(self) -> Dict[str, Any]:
        """Return non-secret settings as a serialisable dictionary."""
        return {
            "llm_base_url": self.llm_base_url,
            "llm_model": self.llm_model,
            "relay_model": self.relay_model,
            "low_stock_threshold": self.low_stock_threshold,
            "recent_order_limit": self.recent_order_limit,
            "catalog_path": str(self.catalog_path),
            "sessions_storage_dir": str(self.sessions_storage_dir),
            "stream_deadline_s": self.stream_deadline_s,
        }


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings."""
    settings = AppSettings()
    settings.sessions_storage_dir.mkdir(parents=True, exist_ok=True)
    return settings


settings = get_settings()
