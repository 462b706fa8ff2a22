"""Database schema definition and initialization."""

from __future__ import annotations

import logging

from feedrank.storage.connection import get_connection

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
-- Configured upstream origins
CREATE TABLE IF NOT EXISTS sources (
    id                  TEXT PRIMARY KEY,
    kind                TEXT NOT NULL CHECK (kind IN (
                            'syndication', 'channel', 'hub', 'repository', 'microblog'
                        )),
    origin_url          TEXT NOT NULL UNIQUE,
    title               TEXT NOT NULL DEFAULT '',
    category            TEXT NOT NULL DEFAULT 'general',
    enabled             INTEGER NOT NULL DEFAULT 1,
    consecutive_errors  INTEGER NOT NULL DEFAULT 0,
    last_synced_at      TEXT,
    last_error          TEXT,
    timeout_seconds     REAL NOT NULL DEFAULT 15,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

-- Normalized, deduplicated content
CREATE TABLE IF NOT EXISTS content_items (
    id                  TEXT PRIMARY KEY,
    source_id           TEXT REFERENCES sources(id) ON DELETE SET NULL,
    source_kind         TEXT NOT NULL,
    kind                TEXT NOT NULL CHECK (kind IN (
                            'article', 'video', 'model', 'repo', 'post'
                        )),
    external_id         TEXT,
    title               TEXT NOT NULL,
    title_key           TEXT NOT NULL,          -- normalized title for identity lookup
    author              TEXT NOT NULL DEFAULT '',
    author_key          TEXT NOT NULL DEFAULT '',
    summary             TEXT NOT NULL DEFAULT '',
    body                TEXT NOT NULL DEFAULT '',
    canonical_url       TEXT NOT NULL UNIQUE,
    category            TEXT NOT NULL DEFAULT 'general',
    tags                TEXT NOT NULL DEFAULT '[]',     -- JSON array
    media               TEXT NOT NULL DEFAULT '{}',     -- JSON object
    metrics             TEXT NOT NULL DEFAULT '{}',     -- JSON object, kind-specific
    like_count          INTEGER NOT NULL DEFAULT 0,
    view_count          INTEGER NOT NULL DEFAULT 0,
    bookmark_count      INTEGER NOT NULL DEFAULT 0,
    vote_count          INTEGER NOT NULL DEFAULT 0,
    user_rating         REAL NOT NULL DEFAULT 0,
    external_score      REAL NOT NULL DEFAULT 0,
    local_score         REAL NOT NULL DEFAULT 0,
    final_score         REAL NOT NULL DEFAULT 0,
    fingerprint         TEXT NOT NULL,
    published_at        TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    last_synced_at      TEXT NOT NULL,
    active              INTEGER NOT NULL DEFAULT 1
);

-- One SyncRun per pass over a Source; append-only
CREATE TABLE IF NOT EXISTS sync_runs (
    id              TEXT PRIMARY KEY,
    source_id       TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    started_at      TEXT NOT NULL,
    finished_at     TEXT,
    status          TEXT NOT NULL CHECK (status IN ('running', 'succeeded', 'failed')),
    saved           INTEGER NOT NULL DEFAULT 0,
    updated         INTEGER NOT NULL DEFAULT 0,
    skipped         INTEGER NOT NULL DEFAULT 0,
    errored         INTEGER NOT NULL DEFAULT 0,
    error           TEXT
);

-- Per-user engagement
CREATE TABLE IF NOT EXISTS item_likes (
    item_id     TEXT NOT NULL REFERENCES content_items(id) ON DELETE CASCADE,
    user_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    PRIMARY KEY (item_id, user_id)
);

CREATE TABLE IF NOT EXISTS item_bookmarks (
    item_id     TEXT NOT NULL REFERENCES content_items(id) ON DELETE CASCADE,
    user_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    PRIMARY KEY (item_id, user_id)
);

CREATE TABLE IF NOT EXISTS item_votes (
    item_id     TEXT NOT NULL REFERENCES content_items(id) ON DELETE CASCADE,
    user_id     TEXT NOT NULL,
    rating      INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
    voted_at    TEXT NOT NULL,
    PRIMARY KEY (item_id, user_id)
);

-- Indexes: sources
CREATE INDEX IF NOT EXISTS idx_sources_enabled_synced ON sources(enabled, last_synced_at);

-- Indexes: content_items
CREATE UNIQUE INDEX IF NOT EXISTS idx_items_external_identity
    ON content_items(external_id, source_kind) WHERE external_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_items_composite_identity
    ON content_items(source_kind, title_key, author_key);
CREATE INDEX IF NOT EXISTS idx_items_kind_active_published
    ON content_items(kind, active, published_at);
CREATE INDEX IF NOT EXISTS idx_items_final_score_active
    ON content_items(final_score, active);
CREATE INDEX IF NOT EXISTS idx_items_source_id ON content_items(source_id);
CREATE INDEX IF NOT EXISTS idx_items_category ON content_items(category);

-- Indexes: sync_runs
CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_runs_one_running
    ON sync_runs(source_id) WHERE status = 'running';
CREATE INDEX IF NOT EXISTS idx_sync_runs_source_started ON sync_runs(source_id, started_at);
"""


def init_db(database_path: str) -> None:
    """Create all tables and indexes if they do not already exist."""
    with get_connection(database_path) as conn:
        conn.executescript(_SCHEMA_SQL)
    logger.info("Database initialized at %s", database_path)
