"""Core records shared by the orchestrator, storage, and admin interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field

SOURCE_KINDS = ("syndication", "channel", "hub", "repository", "microblog")

ITEM_KINDS = ("article", "video", "model", "repo", "post")

# Each source kind produces exactly one item kind.
ITEM_KIND_BY_SOURCE = {
    "syndication": "article",
    "channel": "video",
    "hub": "model",
    "repository": "repo",
    "microblog": "post",
}

RUN_STATUSES = ("running", "succeeded", "failed")

DEFAULT_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class Source:
    """A configured upstream content origin."""

    id: str
    kind: str
    origin_url: str
    title: str = ""
    category: str = "general"
    enabled: bool = True
    consecutive_errors: int = 0
    last_synced_at: str | None = None
    last_error: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def item_kind(self) -> str:
        return ITEM_KIND_BY_SOURCE[self.kind]


@dataclass
class SyncCounts:
    """Aggregate per-item outcomes of one SyncRun."""

    saved: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "saved": self.saved,
            "updated": self.updated,
            "skipped": self.skipped,
            "errored": self.errored,
        }


@dataclass(frozen=True)
class SyncRun:
    """One execution attempt of ingesting a single Source."""

    id: str
    source_id: str
    started_at: str
    status: str
    finished_at: str | None = None
    counts: SyncCounts = field(default_factory=SyncCounts)
    error: str | None = None
