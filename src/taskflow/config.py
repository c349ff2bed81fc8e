"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote persistence
    remote_backend: Literal["sqlite", "rest"] = Field(
        default="sqlite",
        validation_alias=AliasChoices("TASKFLOW_REMOTE_BACKEND", "remote_backend"),
    )
    sqlite_database_path: Path = Field(
        default_factory=lambda: Path("data/taskflow.db"),
        validation_alias=AliasChoices("TASKFLOW_DATABASE_PATH", "sqlite_database_path"),
    )
    local_user_id: Optional[str] = Field(
        default="local-user",
        validation_alias=AliasChoices("TASKFLOW_USER_ID", "local_user_id"),
    )
    rest_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_URL", "rest_url"),
    )
    rest_anon_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "rest_anon_key"),
    )
    rest_access_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_ACCESS_TOKEN", "rest_access_token"),
    )
    remote_timeout: float = Field(
        default=10.0,
        ge=0.1,
        validation_alias=AliasChoices("TASKFLOW_REMOTE_TIMEOUT", "remote_timeout"),
    )

    # Local durable storage (sync queue, open session, focus state)
    storage_dir: Path = Field(
        default_factory=lambda: Path("data/local"),
        validation_alias=AliasChoices("TASKFLOW_STORAGE_DIR", "storage_dir"),
    )

    # Session sync
    sync_auto: bool = Field(
        default=True,
        validation_alias=AliasChoices("TASKFLOW_AUTO_SYNC", "sync_auto"),
    )
    sync_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("TASKFLOW_SYNC_INTERVAL", "sync_interval_seconds"),
    )
    sync_retry_attempts: int = Field(
        default=3,
        ge=0,
        validation_alias=AliasChoices("TASKFLOW_SYNC_RETRIES", "sync_retry_attempts"),
    )
    sync_retry_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        validation_alias=AliasChoices(
            "TASKFLOW_SYNC_RETRY_DELAY", "sync_retry_delay_seconds"
        ),
    )
    sync_offline_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("TASKFLOW_OFFLINE_MODE", "sync_offline_mode"),
    )

    # Soft-deleted tasks stay restorable for this many seconds
    hard_delete_grace_seconds: float = Field(
        default=10.0,
        ge=0,
        validation_alias=AliasChoices(
            "TASKFLOW_DELETE_GRACE_SECONDS", "hard_delete_grace_seconds"
        ),
    )

    # Natural-language task parser
    parser_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_API_KEY", "OPENAI_API_KEY", "parser_api_key"
        ),
    )
    parser_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("OPENROUTER_BASE_URL", "parser_base_url"),
    )
    parser_model: str = Field(
        default="openai/gpt-4o-mini",
        validation_alias=AliasChoices("TASKFLOW_PARSER_MODEL", "parser_model"),
    )
    parser_timeout: float = Field(
        default=30.0,
        ge=1,
        validation_alias=AliasChoices("TASKFLOW_PARSER_TIMEOUT", "parser_timeout"),
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings", "PROJECT_ROOT"]
