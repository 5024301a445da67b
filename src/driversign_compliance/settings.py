"""
driversign_compliance.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for CLI and API entrypoints.
- Hide secrets from repr/logging (e.g., JWT secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Every knob is overridable via `DSC_*` environment variables.
    Defaults are safe for local runs against a SQLite ledger.
    """

    model_config = SettingsConfigDict(env_prefix="DSC_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "driversign-compliance"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "driversign-compliance"
    jwt_audience: str = "dsc-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    # Persistence (verdict cache + dispatch ledger)
    database_url: str = "sqlite+aiosqlite:///./dsc.db"

    # Policy document loaded into the PolicyStore at startup.
    policy_path: str = "policy.yaml"

    # Action targets
    quarantine_dir: str = "./quarantine"
    internal_api_base_url: str = "http://localhost:8080"

    # Dispatch retry
    dispatch_max_attempts: int = Field(default=4, ge=1)
    dispatch_backoff_seconds: float = Field(default=0.5, ge=0)
    dispatch_backoff_max_seconds: float = Field(default=8.0, ge=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# The CLI and the API share this model; CLI flags override individual fields via
# `Settings.model_copy(update=...)` rather than mutating the cached instance.
