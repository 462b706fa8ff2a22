"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Application configuration. All values sourced from environment variables."""

    # Required
    database_path: str

    # Optional — Sync
    sync_interval_minutes: int = 30
    sync_workers: int = 4
    fetch_timeout_seconds: float = 15.0
    max_items_per_source: int = 50
    source_failure_disable_threshold: int = 5
    sources_config_path: str | None = None

    # Optional — Scoring
    score_external_weight: float = 0.85

    # Optional — Upstream throttling
    rate_limit_requests: int = 100
    rate_limit_window_seconds: float = 60.0
    response_cache_ttl_seconds: float = 300.0

    # Optional — Credentials
    huggingface_api_token: str | None = None
    github_token: str | None = None
    x_bearer_token: str | None = None

    # Optional — Application
    log_level: str = "INFO"
    log_format: str = "json"
    app_env: str = "production"

    def credentials(self) -> dict[str, str | None]:
        """Per-kind upstream credentials handed to adapters."""
        return {
            "hub": self.huggingface_api_token,
            "repository": self.github_token,
            "microblog": self.x_bearer_token,
        }


_REQUIRED_VARS = [
    "DATABASE_PATH",
]


def _float_between(name: str, raw: str, low: float, high: float) -> float:
    value = float(raw)
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")
    return value


def load_config(env_path: str | Path | None = None) -> Config:
    """Load configuration from environment variables.

    Loads a .env file if present (for local development), then validates
    that all required variables are set. Raises ValueError listing any
    missing variables.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [var for var in _REQUIRED_VARS if not os.environ.get(var)]
    if missing:
        raise ValueError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    sync_workers = int(os.environ.get("SYNC_WORKERS", "4"))
    if sync_workers < 1:
        raise ValueError(f"SYNC_WORKERS must be at least 1, got {sync_workers}")

    return Config(
        # Required
        database_path=os.environ["DATABASE_PATH"],
        # Optional — Sync
        sync_interval_minutes=int(os.environ.get("SYNC_INTERVAL_MINUTES", "30")),
        sync_workers=sync_workers,
        fetch_timeout_seconds=float(os.environ.get("FETCH_TIMEOUT_SECONDS", "15")),
        max_items_per_source=int(os.environ.get("MAX_ITEMS_PER_SOURCE", "50")),
        source_failure_disable_threshold=int(
            os.environ.get("SOURCE_FAILURE_DISABLE_THRESHOLD", "5")
        ),
        sources_config_path=os.environ.get("SOURCES_CONFIG_PATH") or None,
        # Optional — Scoring
        score_external_weight=_float_between(
            "SCORE_EXTERNAL_WEIGHT", os.environ.get("SCORE_EXTERNAL_WEIGHT", "0.85"), 0.0, 1.0
        ),
        # Optional — Upstream throttling
        rate_limit_requests=int(os.environ.get("RATE_LIMIT_REQUESTS", "100")),
        rate_limit_window_seconds=float(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "60")),
        response_cache_ttl_seconds=float(os.environ.get("RESPONSE_CACHE_TTL_SECONDS", "300")),
        # Optional — Credentials
        huggingface_api_token=os.environ.get("HUGGINGFACE_API_TOKEN") or None,
        github_token=os.environ.get("GITHUB_TOKEN") or None,
        x_bearer_token=os.environ.get("X_BEARER_TOKEN") or None,
        # Optional — Application
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_format=os.environ.get("LOG_FORMAT", "json"),
        app_env=os.environ.get("APP_ENV", "production"),
    )
