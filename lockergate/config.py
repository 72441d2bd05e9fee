from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROD_ENV_NAMES = {"prod", "production"}
MIN_CODE_BYTES = 16


class Settings(BaseSettings):
    app_name: str = Field(default="LockerGate")
    app_env: str = Field(default="dev")
    app_version: str = Field(default="0.1.0")

    database_url: str = Field(default="")

    log_level: str = Field(default="INFO")
    log_file: str = Field(default="data/app.log")
    log_db_queries: bool = Field(default=True)
    log_db_query_params: bool = Field(default=False)
    log_sql_max_length: int = Field(default=400)

    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8000)
    public_base_url: str = Field(default="")

    device_id_prefix: str = Field(default="LOCKER_")
    device_id_width: int = Field(default=3, ge=1, le=32)

    session_default_validity_ms: int = Field(default=15000)
    session_min_validity_ms: int = Field(default=1000, ge=1)
    session_max_validity_ms: int = Field(default=86_400_000, ge=1)
    session_code_bytes: int = Field(default=MIN_CODE_BYTES)

    scan_merge_already_used: bool = Field(default=False)
    scan_rate_limit_misses: int = Field(default=20, ge=1)
    scan_rate_limit_window_seconds: int = Field(default=60)
    scan_rate_limit_lockout_seconds: int = Field(default=60)

    store_timeout_seconds: float = Field(default=5.0, gt=0)

    housekeeping_enabled: bool = Field(default=False)
    housekeeping_interval_seconds: int = Field(default=300, ge=5)
    session_retention_seconds: int = Field(default=86400, ge=0)
    event_retention_days: int = Field(default=30, ge=0)

    metrics_enabled: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        if not self.database_url:
            raise ValueError("DATABASE_URL must be set in .env or environment variables.")
        if self.session_code_bytes < MIN_CODE_BYTES:
            raise ValueError(f"SESSION_CODE_BYTES must be at least {MIN_CODE_BYTES}.")
        if self.session_max_validity_ms < self.session_min_validity_ms:
            raise ValueError("SESSION_MAX_VALIDITY_MS must not be below SESSION_MIN_VALIDITY_MS.")
        if self.app_env.strip().lower() in _PROD_ENV_NAMES:
            issues: list[str] = []
            if self.public_base_url and not self.public_base_url.startswith("https://"):
                issues.append("PUBLIC_BASE_URL must use https in production.")
            if self.log_db_query_params:
                issues.append("LOG_DB_QUERY_PARAMS must be disabled in production.")
            if issues:
                raise ValueError(" ".join(issues))
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
