# fleetsync/config.py
"""Runtime configuration read from the environment (and an optional .env file)."""
from __future__ import annotations

import dataclasses
import os
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv

from .exceptions import ConfigurationError

load_dotenv()


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def normalize_database_url(url: str) -> str:
    # SQLAlchemy 2.x doesn't accept 'postgres://'
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


@dataclasses.dataclass(frozen=True)
class Settings:
    """Server-side settings.

    Parameters
    ----------
    database_url : str or None
        SQLAlchemy URL of the canonical store (``POSTGRES_URL``).
    motive_api_base_url, samsara_api_base_url : str
        Production API hosts.
    motive_sandbox_api_base_url, samsara_sandbox_api_base_url : str or None
        Hosts used for connections flagged ``use_sandbox``; fall back to the
        production host when unset.
    provider_timeout_seconds : float
        Per-request timeout for provider calls.
    provider_max_retries : int
        Attempts per page before a network failure is reported.
    google_maps_api_key : str or None
        Enables reverse geocoding in ``search_fleet_latest``; without it
        results keep bare coordinates.
    jwt_secret : str or None
        Key used to verify caller identity tokens for the query tool.
    sync_run_ttl_minutes : int
        Age after which a ``running`` SyncRun is reaped as abandoned.
    stale_after_missed_cycles : int
        Consecutive successful syncs a vehicle may be absent from before it
        is flagged stale.
    """

    database_url: str | None = None
    db_pool_size: int = 5
    db_max_overflow: int = 10
    motive_api_base_url: str = "https://api.gomotive.com"
    samsara_api_base_url: str = "https://api.samsara.com"
    motive_sandbox_api_base_url: str | None = None
    samsara_sandbox_api_base_url: str | None = None
    provider_timeout_seconds: float = 30.0
    provider_max_retries: int = 3
    google_maps_api_key: str | None = None
    geocode_api_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    sync_run_ttl_minutes: int = 30
    stale_after_missed_cycles: int = 3
    enable_scheduler: bool = False
    sync_interval_minutes: int = 5

    @classmethod
    def from_env(cls, **overrides: Any) -> Settings:
        env = os.environ
        kwargs: dict[str, Any] = {}

        url = env.get("POSTGRES_URL")
        if url:
            kwargs["database_url"] = normalize_database_url(url)

        _ENV_STR_MAP = {
            "MOTIVE_API_BASE_URL": "motive_api_base_url",
            "SAMSARA_API_BASE_URL": "samsara_api_base_url",
            "MOTIVE_SANDBOX_API_BASE_URL": "motive_sandbox_api_base_url",
            "SAMSARA_SANDBOX_API_BASE_URL": "samsara_sandbox_api_base_url",
            "GOOGLE_MAPS_API_KEY": "google_maps_api_key",
            "GEOCODE_API_URL": "geocode_api_url",
            "JWT_SECRET": "jwt_secret",
            "JWT_ALGORITHM": "jwt_algorithm",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val:
                kwargs[field_name] = val

        _ENV_INT_MAP = {
            "DB_POOL_SIZE": "db_pool_size",
            "DB_MAX_OVERFLOW": "db_max_overflow",
            "PROVIDER_MAX_RETRIES": "provider_max_retries",
            "SYNC_RUN_TTL_MINUTES": "sync_run_ttl_minutes",
            "STALE_AFTER_MISSED_CYCLES": "stale_after_missed_cycles",
            "SYNC_INTERVAL_MINUTES": "sync_interval_minutes",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None:
                try:
                    kwargs[field_name] = int(val)
                except ValueError as e:
                    raise ConfigurationError(f"{env_key} must be an integer, got {val!r}") from e

        timeout_env = env.get("PROVIDER_TIMEOUT_SECONDS")
        if timeout_env is not None:
            try:
                kwargs["provider_timeout_seconds"] = float(timeout_env)
            except ValueError as e:
                raise ConfigurationError(f"PROVIDER_TIMEOUT_SECONDS must be a number, got {timeout_env!r}") from e

        kwargs["enable_scheduler"] = _env_bool(env.get("ENABLE_SCHEDULER"), False)

        kwargs.update(overrides)
        return cls(**kwargs)

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigurationError("POSTGRES_URL not set")
        return self.database_url

    def require_jwt_secret(self) -> str:
        if not self.jwt_secret:
            raise ConfigurationError("JWT_SECRET not set")
        return self.jwt_secret

    def provider_base_url(self, provider: str, sandbox: bool = False) -> str:
        if sandbox:
            sandbox_url = getattr(self, f"{provider}_sandbox_api_base_url", None)
            if sandbox_url:
                return sandbox_url
        return getattr(self, f"{provider}_api_base_url")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
