"""Admin interface — source management, run history, health, and manual triggers.

The HTTP/dashboard layer that exposes these operations is an external
collaborator; it calls into :class:`AdminService` in process.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, ValidationError, field_validator

from feedrank.errors import ConfigurationError
from feedrank.models import DEFAULT_TIMEOUT_SECONDS, SOURCE_KINDS, Source, SyncRun
from feedrank.orchestrator import PassSummary, SyncOrchestrator
from feedrank.storage.gateway import Storage

logger = logging.getLogger(__name__)


def _check_origin_url(value: str) -> str:
    value = value.strip()
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"origin_url must be an absolute http(s) URL, got '{value}'")
    return value


def _check_kind(value: str) -> str:
    if value not in SOURCE_KINDS:
        raise ValueError(f"kind must be one of: {', '.join(SOURCE_KINDS)}")
    return value


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------
class SourceCreate(BaseModel):
    kind: str
    origin_url: str
    title: str = ""
    category: str = "general"
    enabled: bool = True
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)

    @field_validator("kind")
    @classmethod
    def valid_kind(cls, v: str) -> str:
        return _check_kind(v)

    @field_validator("origin_url")
    @classmethod
    def valid_origin(cls, v: str) -> str:
        return _check_origin_url(v)


class SourceUpdate(BaseModel):
    kind: str | None = None
    origin_url: str | None = None
    title: str | None = None
    category: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("kind")
    @classmethod
    def valid_kind(cls, v: str | None) -> str | None:
        return v if v is None else _check_kind(v)

    @field_validator("origin_url")
    @classmethod
    def valid_origin(cls, v: str | None) -> str | None:
        return v if v is None else _check_origin_url(v)


class SeedFile(BaseModel):
    sources: list[SourceCreate]


# ---------------------------------------------------------------------------
# Health view
# ---------------------------------------------------------------------------
class SourceHealth(BaseModel):
    source_id: str
    kind: str
    origin_url: str
    title: str
    enabled: bool
    consecutive_errors: int
    last_error: str | None
    last_synced_at: str | None
    last_run_status: str | None = None
    last_run_started_at: str | None = None
    last_run_counts: dict[str, int] | None = None


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


class AdminService:
    """Operations the admin collaborator drives."""

    def __init__(
        self,
        storage: Storage,
        orchestrator: SyncOrchestrator,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._storage = storage
        self._orchestrator = orchestrator
        self._default_timeout = default_timeout_seconds

    # Sources ---------------------------------------------------------
    def create_source(self, data: dict) -> Source:
        """Validate and create a Source. Raises ConfigurationError on bad input."""
        payload = {"timeout_seconds": self._default_timeout, **data}
        try:
            validated = SourceCreate.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid source: {_validation_message(exc)}") from exc
        if self._storage.find_source_by_url(validated.origin_url) is not None:
            raise ConfigurationError(f"A source with origin {validated.origin_url} already exists")
        return self._storage.create_source(**validated.model_dump())

    def update_source(self, source_id: str, data: dict) -> Source:
        try:
            validated = SourceUpdate.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid source update: {_validation_message(exc)}") from exc
        return self._storage.update_source(source_id, **validated.model_dump(exclude_none=True))

    def enable_source(self, source_id: str) -> Source:
        source = self._storage.set_source_enabled(source_id, True)
        logger.info("Source %s enabled", source_id)
        return source

    def disable_source(self, source_id: str) -> Source:
        source = self._storage.set_source_enabled(source_id, False)
        logger.info("Source %s disabled", source_id)
        return source

    def delete_source(self, source_id: str) -> None:
        self._storage.delete_source(source_id)

    def list_sources(self, enabled_only: bool = False) -> list[Source]:
        return self._storage.list_sources(enabled_only=enabled_only)

    # Runs and health -------------------------------------------------
    def list_sync_runs(
        self, source_id: str | None = None, page: int = 1, per_page: int = 20
    ) -> tuple[list[SyncRun], int]:
        """Return a page of SyncRuns, newest first, and the total count."""
        page = max(page, 1)
        return self._storage.list_runs(
            source_id, limit=per_page, offset=(page - 1) * per_page
        )

    def source_health(self) -> list[SourceHealth]:
        latest = self._storage.latest_runs()
        report = []
        for source in self._storage.list_sources():
            run = latest.get(source.id)
            report.append(
                SourceHealth(
                    source_id=source.id,
                    kind=source.kind,
                    origin_url=source.origin_url,
                    title=source.title,
                    enabled=source.enabled,
                    consecutive_errors=source.consecutive_errors,
                    last_error=source.last_error,
                    last_synced_at=source.last_synced_at,
                    last_run_status=run.status if run else None,
                    last_run_started_at=run.started_at if run else None,
                    last_run_counts=run.counts.as_dict() if run else None,
                )
            )
        return report

    # Triggers --------------------------------------------------------
    def trigger_sync(self, source_id: str) -> SyncRun:
        return self._orchestrator.trigger_source(source_id)

    def trigger_all(self, force: bool = False) -> PassSummary:
        return self._orchestrator.trigger_all(force=force)

    # Seeding ---------------------------------------------------------
    def seed_sources(self, path: str | Path) -> list[Source]:
        """Upsert Sources from a JSON file of the form ``{"sources": [...]}``.

        Existing sources (matched by origin URL) keep their enabled flag and
        health counters.
        """
        with open(path) as f:
            raw = json.load(f)
        for entry in raw.get("sources", []) if isinstance(raw, dict) else []:
            if isinstance(entry, dict):
                entry.setdefault("timeout_seconds", self._default_timeout)
        try:
            seed = SeedFile.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid sources file {path}: {_validation_message(exc)}") from exc

        seeded = [
            self._storage.upsert_source(
                validated.kind,
                validated.origin_url,
                title=validated.title,
                category=validated.category,
                timeout_seconds=validated.timeout_seconds,
            )
            for validated in seed.sources
        ]
        logger.info("Seeded %d source(s) from %s", len(seeded), path)
        return seeded
