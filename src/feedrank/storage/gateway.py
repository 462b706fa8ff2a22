"""Persistence gateway — the storage handle passed to the orchestrator and interfaces.

All mutation of content items is keyed by resolved identity. Scores are never
derived here: callers compute them, or pass an explicit ``rescore`` callback
that is invoked with the engagement counters read inside the same write
transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Generator

from feedrank.errors import (
    ItemNotFound,
    PersistenceError,
    SourceNotFound,
    SyncAlreadyRunning,
)
from feedrank.ingestion.dedup import StoredIdentity, normalize_text
from feedrank.ingestion.normalize import NormalizedItem, metrics_as_dict
from feedrank.models import Source, SyncCounts, SyncRun
from feedrank.scoring import Engagement, Scores
from feedrank.storage.connection import get_connection
from feedrank.storage.schema import init_db

logger = logging.getLogger(__name__)

Rescore = Callable[[Engagement], Scores]

# Called with the kind, metrics and engagement read inside the engagement write.
EngagementRescore = Callable[[str, dict, Engagement], Scores]

_SOURCE_FIELDS = ("kind", "origin_url", "title", "category", "enabled", "timeout_seconds")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        kind=row["kind"],
        origin_url=row["origin_url"],
        title=row["title"],
        category=row["category"],
        enabled=bool(row["enabled"]),
        consecutive_errors=row["consecutive_errors"],
        last_synced_at=row["last_synced_at"],
        last_error=row["last_error"],
        timeout_seconds=row["timeout_seconds"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_run(row: sqlite3.Row) -> SyncRun:
    return SyncRun(
        id=row["id"],
        source_id=row["source_id"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
        status=row["status"],
        counts=SyncCounts(
            saved=row["saved"],
            updated=row["updated"],
            skipped=row["skipped"],
            errored=row["errored"],
        ),
        error=row["error"],
    )


class Storage:
    """Explicitly constructed, lifetime-scoped handle to the SQLite store."""

    def __init__(self, database_path: str) -> None:
        self.database_path = database_path
        self._open = False

    def initialize(self) -> None:
        init_db(self.database_path)
        self._open = True

    def close(self) -> None:
        self._open = False
        logger.info("Storage closed (%s)", self.database_path)

    @property
    def is_open(self) -> bool:
        return self._open

    @contextmanager
    def connection(self, write: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """Yield a connection, translating sqlite errors into PersistenceError.

        ``write=True`` takes the database write lock up front so a
        read-modify-write sequence cannot interleave with another writer.
        """
        if not self._open:
            raise PersistenceError("Storage is not initialized or already closed")
        try:
            with get_connection(self.database_path) as conn:
                if write:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------
    def create_source(
        self,
        kind: str,
        origin_url: str,
        *,
        title: str = "",
        category: str = "general",
        enabled: bool = True,
        timeout_seconds: float = 15.0,
    ) -> Source:
        now = _utcnow()
        source_id = str(uuid.uuid4())
        with self.connection() as conn:
            conn.execute(
                "INSERT INTO sources "
                "(id, kind, origin_url, title, category, enabled, timeout_seconds, "
                "created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (source_id, kind, origin_url, title, category, int(enabled),
                 timeout_seconds, now, now),
            )
        logger.info("Created %s source %s (%s)", kind, source_id, origin_url)
        return self.get_source(source_id)

    def upsert_source(
        self,
        kind: str,
        origin_url: str,
        *,
        title: str = "",
        category: str = "general",
        timeout_seconds: float = 15.0,
    ) -> Source:
        """Insert a source, or refresh its descriptive fields if the origin URL exists.

        The enabled flag and health counters of an existing source are kept.
        """
        now = _utcnow()
        with self.connection() as conn:
            conn.execute(
                "INSERT INTO sources "
                "(id, kind, origin_url, title, category, timeout_seconds, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(origin_url) DO UPDATE SET "
                "kind = excluded.kind, title = excluded.title, category = excluded.category, "
                "timeout_seconds = excluded.timeout_seconds, updated_at = excluded.updated_at",
                (str(uuid.uuid4()), kind, origin_url, title, category, timeout_seconds, now, now),
            )
            row = conn.execute(
                "SELECT * FROM sources WHERE origin_url = ?", (origin_url,)
            ).fetchone()
        return _row_to_source(row)

    def get_source(self, source_id: str) -> Source:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        if row is None:
            raise SourceNotFound(source_id)
        return _row_to_source(row)

    def find_source_by_url(self, origin_url: str) -> Source | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM sources WHERE origin_url = ?", (origin_url,)
            ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, enabled_only: bool = False) -> list[Source]:
        sql = "SELECT * FROM sources"
        if enabled_only:
            sql += " WHERE enabled = 1"
        with self.connection() as conn:
            rows = conn.execute(sql + " ORDER BY created_at, id").fetchall()
        return [_row_to_source(r) for r in rows]

    def update_source(self, source_id: str, **changes) -> Source:
        """Update descriptive fields (kind, origin_url, title, category, enabled, timeout)."""
        unknown = set(changes) - set(_SOURCE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update source fields: {', '.join(sorted(unknown))}")
        if "enabled" in changes:
            changes["enabled"] = int(changes["enabled"])
        if changes:
            assignments = ", ".join(f"{name} = ?" for name in changes)
            with self.connection() as conn:
                cursor = conn.execute(
                    f"UPDATE sources SET {assignments}, updated_at = ? WHERE id = ?",  # noqa: S608
                    (*changes.values(), _utcnow(), source_id),
                )
                if cursor.rowcount == 0:
                    raise SourceNotFound(source_id)
        return self.get_source(source_id)

    def set_source_enabled(self, source_id: str, enabled: bool) -> Source:
        """Enable or disable a source. Enabling also clears its failure streak."""
        with self.connection() as conn:
            if enabled:
                cursor = conn.execute(
                    "UPDATE sources SET enabled = 1, consecutive_errors = 0, updated_at = ? "
                    "WHERE id = ?",
                    (_utcnow(), source_id),
                )
            else:
                cursor = conn.execute(
                    "UPDATE sources SET enabled = 0, updated_at = ? WHERE id = ?",
                    (_utcnow(), source_id),
                )
            if cursor.rowcount == 0:
                raise SourceNotFound(source_id)
        return self.get_source(source_id)

    def delete_source(self, source_id: str) -> None:
        """Delete a source and its run history. Its content items are kept."""
        with self.connection() as conn:
            cursor = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
            if cursor.rowcount == 0:
                raise SourceNotFound(source_id)
        logger.info("Deleted source %s", source_id)

    def eligible_sources(self, synced_before: str) -> list[Source]:
        """Enabled sources never synced, or last synced before the cutoff."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sources WHERE enabled = 1 "
                "AND (last_synced_at IS NULL OR last_synced_at < ?) "
                "ORDER BY last_synced_at IS NOT NULL, last_synced_at, id",
                (synced_before,),
            ).fetchall()
        return [_row_to_source(r) for r in rows]

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------
    def start_run(self, source_id: str) -> SyncRun:
        """Atomically open a running SyncRun. Raises SyncAlreadyRunning if one exists."""
        run_id = str(uuid.uuid4())
        now = _utcnow()
        try:
            with self.connection(write=True) as conn:
                if conn.execute(
                    "SELECT 1 FROM sources WHERE id = ?", (source_id,)
                ).fetchone() is None:
                    raise SourceNotFound(source_id)
                conn.execute(
                    "INSERT INTO sync_runs (id, source_id, started_at, status) "
                    "VALUES (?, ?, ?, 'running')",
                    (run_id, source_id, now),
                )
        except PersistenceError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise SyncAlreadyRunning(source_id) from exc
            raise
        return SyncRun(id=run_id, source_id=source_id, started_at=now, status="running")

    def finish_run_succeeded(self, run: SyncRun, counts: SyncCounts) -> None:
        """Close the run as succeeded and reset the source's failure streak."""
        now = _utcnow()
        with self.connection() as conn:
            conn.execute(
                "UPDATE sync_runs SET status = 'succeeded', finished_at = ?, "
                "saved = ?, updated = ?, skipped = ?, errored = ? WHERE id = ?",
                (now, counts.saved, counts.updated, counts.skipped, counts.errored, run.id),
            )
            conn.execute(
                "UPDATE sources SET consecutive_errors = 0, last_error = NULL, "
                "last_synced_at = ?, updated_at = ? WHERE id = ?",
                (now, now, run.source_id),
            )

    def finish_run_failed(
        self,
        run: SyncRun,
        counts: SyncCounts,
        error: str,
        *,
        disable_threshold: int,
        disable_now: bool = False,
    ) -> Source:
        """Close the run as failed and advance the source's failure streak.

        The source is disabled when the streak reaches ``disable_threshold``
        or when ``disable_now`` is set.
        """
        now = _utcnow()
        with self.connection(write=True) as conn:
            conn.execute(
                "UPDATE sync_runs SET status = 'failed', finished_at = ?, error = ?, "
                "saved = ?, updated = ?, skipped = ?, errored = ? WHERE id = ?",
                (now, error, counts.saved, counts.updated, counts.skipped, counts.errored,
                 run.id),
            )
            conn.execute(
                "UPDATE sources SET consecutive_errors = consecutive_errors + 1, "
                "last_error = ?, updated_at = ? WHERE id = ?",
                (error, now, run.source_id),
            )
            conn.execute(
                "UPDATE sources SET enabled = 0 WHERE id = ? "
                "AND (consecutive_errors >= ? OR ?)",
                (run.source_id, disable_threshold, int(disable_now)),
            )
            row = conn.execute(
                "SELECT * FROM sources WHERE id = ?", (run.source_id,)
            ).fetchone()
        return _row_to_source(row)

    def release_run(self, run: SyncRun, error: str) -> None:
        """Mark a still-running run failed without touching its source."""
        with self.connection() as conn:
            conn.execute(
                "UPDATE sync_runs SET status = 'failed', finished_at = ?, error = ? "
                "WHERE id = ? AND status = 'running'",
                (_utcnow(), error, run.id),
            )

    def abandon_running_runs(self) -> int:
        """Fail runs left in the running state by a previous process."""
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE sync_runs SET status = 'failed', finished_at = ?, "
                "error = 'abandoned: process stopped during run' WHERE status = 'running'",
                (_utcnow(),),
            )
        if cursor.rowcount:
            logger.warning("Marked %d abandoned sync run(s) as failed", cursor.rowcount)
        return cursor.rowcount

    def list_runs(
        self, source_id: str | None = None, *, limit: int = 50, offset: int = 0
    ) -> tuple[list[SyncRun], int]:
        where = "WHERE source_id = ?" if source_id else ""
        params: list[object] = [source_id] if source_id else []
        with self.connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM sync_runs {where}", params  # noqa: S608
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM sync_runs {where} "  # noqa: S608
                "ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
        return [_row_to_run(r) for r in rows], total

    def latest_runs(self) -> dict[str, SyncRun]:
        """Most recent run per source id."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT r.* FROM sync_runs r "
                "JOIN (SELECT source_id, MAX(started_at) AS started_at "
                "      FROM sync_runs GROUP BY source_id) latest "
                "ON r.source_id = latest.source_id AND r.started_at = latest.started_at"
            ).fetchall()
        return {r["source_id"]: _row_to_run(r) for r in rows}

    # ------------------------------------------------------------------
    # Content items
    # ------------------------------------------------------------------
    def find_identity_candidates(
        self, item: NormalizedItem, source_kind: str
    ) -> list[StoredIdentity]:
        """Stored items matching any identity key of ``item``."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT id, canonical_url, external_id, source_kind, title, author "
                "FROM content_items "
                "WHERE canonical_url = ? "
                "OR (external_id = ? AND source_kind = ?) "
                "OR (source_kind = ? AND title_key = ? AND author_key = ?)",
                (
                    item.canonical_url,
                    item.external_id, source_kind,
                    source_kind, normalize_text(item.title), normalize_text(item.author),
                ),
            ).fetchall()
        return [
            StoredIdentity(
                id=r["id"],
                canonical_url=r["canonical_url"],
                external_id=r["external_id"],
                source_kind=r["source_kind"],
                title=r["title"],
                author=r["author"],
            )
            for r in rows
        ]

    def get_fingerprint(self, item_id: str) -> str:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT fingerprint FROM content_items WHERE id = ?", (item_id,)
            ).fetchone()
        if row is None:
            raise ItemNotFound(item_id)
        return row["fingerprint"]

    def insert_item(
        self,
        item: NormalizedItem,
        source: Source,
        *,
        fingerprint: str,
        scores: Scores,
    ) -> str | None:
        """Insert a new item. Returns its id, or None if an identity already exists."""
        item_id = str(uuid.uuid4())
        now = _utcnow()
        with self.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO content_items "
                "(id, source_id, source_kind, kind, external_id, title, title_key, "
                "author, author_key, summary, body, canonical_url, category, tags, media, "
                "metrics, external_score, local_score, final_score, fingerprint, "
                "published_at, created_at, updated_at, last_synced_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT DO NOTHING",
                (
                    item_id, source.id, source.kind, item.kind, item.external_id,
                    item.title, normalize_text(item.title),
                    item.author, normalize_text(item.author),
                    item.summary, item.body, item.canonical_url, source.category,
                    json.dumps(list(item.tags)), json.dumps(item.media),
                    json.dumps(metrics_as_dict(item.metrics)),
                    scores.external, scores.local, scores.final, fingerprint,
                    item.published_at, now, now, now,
                ),
            )
        if cursor.rowcount == 0:
            return None
        return item_id

    def update_item(
        self,
        item_id: str,
        item: NormalizedItem,
        *,
        fingerprint: str,
        rescore: Rescore,
    ) -> Scores:
        """Overwrite an item's mutable fields and rescore it.

        Identity fields (canonical URL, external id) are left untouched.
        """
        now = _utcnow()
        with self.connection(write=True) as conn:
            engagement = self._read_engagement(conn, item_id)
            scores = rescore(engagement)
            conn.execute(
                "UPDATE content_items SET kind = ?, title = ?, title_key = ?, author = ?, "
                "author_key = ?, summary = ?, body = ?, tags = ?, media = ?, metrics = ?, "
                "published_at = ?, fingerprint = ?, external_score = ?, local_score = ?, "
                "final_score = ?, updated_at = ?, last_synced_at = ? WHERE id = ?",
                (
                    item.kind, item.title, normalize_text(item.title),
                    item.author, normalize_text(item.author),
                    item.summary, item.body,
                    json.dumps(list(item.tags)), json.dumps(item.media),
                    json.dumps(metrics_as_dict(item.metrics)),
                    item.published_at, fingerprint,
                    scores.external, scores.local, scores.final,
                    now, now, item_id,
                ),
            )
        return scores

    def _read_engagement(self, conn: sqlite3.Connection, item_id: str) -> Engagement:
        row = conn.execute(
            "SELECT like_count, view_count, bookmark_count, vote_count, user_rating "
            "FROM content_items WHERE id = ?",
            (item_id,),
        ).fetchone()
        if row is None:
            raise ItemNotFound(item_id)
        return Engagement(
            likes=row["like_count"],
            views=row["view_count"],
            bookmarks=row["bookmark_count"],
            votes=row["vote_count"],
            rating=row["user_rating"],
        )

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------
    def _refresh_engagement(
        self,
        conn: sqlite3.Connection,
        item_id: str,
        rescore: EngagementRescore,
        views_delta: int = 0,
    ) -> Scores:
        current = self._read_engagement(conn, item_id)
        row = conn.execute(
            "SELECT kind, metrics FROM content_items WHERE id = ?", (item_id,)
        ).fetchone()
        likes = conn.execute(
            "SELECT COUNT(*) FROM item_likes WHERE item_id = ?", (item_id,)
        ).fetchone()[0]
        bookmarks = conn.execute(
            "SELECT COUNT(*) FROM item_bookmarks WHERE item_id = ?", (item_id,)
        ).fetchone()[0]
        votes_row = conn.execute(
            "SELECT COUNT(*) AS n, COALESCE(AVG(rating), 0) AS avg "
            "FROM item_votes WHERE item_id = ?",
            (item_id,),
        ).fetchone()
        engagement = Engagement(
            likes=likes,
            views=current.views + views_delta,
            bookmarks=bookmarks,
            votes=votes_row["n"],
            rating=float(votes_row["avg"]),
        )
        scores = rescore(row["kind"], json.loads(row["metrics"]), engagement)
        conn.execute(
            "UPDATE content_items SET like_count = ?, view_count = ?, bookmark_count = ?, "
            "vote_count = ?, user_rating = ?, external_score = ?, local_score = ?, "
            "final_score = ? WHERE id = ?",
            (
                engagement.likes, engagement.views, engagement.bookmarks,
                engagement.votes, engagement.rating,
                scores.external, scores.local, scores.final, item_id,
            ),
        )
        return scores

    def record_view(self, item_id: str, rescore: EngagementRescore) -> Scores:
        with self.connection(write=True) as conn:
            return self._refresh_engagement(conn, item_id, rescore, views_delta=1)

    def _toggle(
        self, table: str, item_id: str, user_id: str, rescore: EngagementRescore
    ) -> tuple[bool, Scores]:
        with self.connection(write=True) as conn:
            self._read_engagement(conn, item_id)
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE item_id = ? AND user_id = ?",  # noqa: S608
                (item_id, user_id),
            )
            active = cursor.rowcount == 0
            if active:
                conn.execute(
                    f"INSERT INTO {table} (item_id, user_id, created_at) VALUES (?, ?, ?)",  # noqa: S608
                    (item_id, user_id, _utcnow()),
                )
            return active, self._refresh_engagement(conn, item_id, rescore)

    def toggle_like(self, item_id: str, user_id: str, rescore: EngagementRescore) -> tuple[bool, Scores]:
        return self._toggle("item_likes", item_id, user_id, rescore)

    def toggle_bookmark(self, item_id: str, user_id: str, rescore: EngagementRescore) -> tuple[bool, Scores]:
        return self._toggle("item_bookmarks", item_id, user_id, rescore)

    def cast_vote(
        self, item_id: str, user_id: str, rating: int, rescore: EngagementRescore
    ) -> Scores:
        with self.connection(write=True) as conn:
            self._read_engagement(conn, item_id)
            conn.execute(
                "INSERT INTO item_votes (item_id, user_id, rating, voted_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(item_id, user_id) DO UPDATE SET "
                "rating = excluded.rating, voted_at = excluded.voted_at",
                (item_id, user_id, rating, _utcnow()),
            )
            return self._refresh_engagement(conn, item_id, rescore)
