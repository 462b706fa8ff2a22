"""Sync orchestration — guarded per-source runs dispatched to a bounded worker pool."""

from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

import feedrank.ingestion  # noqa: F401  registers adapters
from feedrank.config import Config
from feedrank.errors import (
    ConfigurationError,
    FetchError,
    ParseError,
    PersistenceError,
    SyncAlreadyRunning,
)
from feedrank.ingestion.adapter import SourceAdapter
from feedrank.ingestion.dedup import compute_fingerprint, resolve_identity
from feedrank.ingestion.http import UpstreamClient
from feedrank.ingestion.normalize import NormalizedItem
from feedrank.ingestion.registry import get_adapter_class
from feedrank.models import Source, SyncCounts, SyncRun
from feedrank.scoring import Engagement, score_item
from feedrank.storage.gateway import Storage

logger = logging.getLogger(__name__)

AdapterLookup = Callable[[str], type[SourceAdapter] | None]

_SAVED = "saved"
_UPDATED = "updated"
_SKIPPED = "skipped"


@dataclass
class PassSummary:
    """Aggregate outcome of one scheduling pass."""

    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    already_running: int = 0
    crashed: int = 0
    counts: SyncCounts = field(default_factory=SyncCounts)

    def add(self, run: SyncRun) -> None:
        if run.status == "succeeded":
            self.succeeded += 1
        else:
            self.failed += 1
        self.counts.saved += run.counts.saved
        self.counts.updated += run.counts.updated
        self.counts.skipped += run.counts.skipped
        self.counts.errored += run.counts.errored


class SyncOrchestrator:
    """Runs Sources through fetch, dedup, score and persist.

    Each Source moves Idle -> Running -> Succeeded/Failed -> Idle. The
    Running transition is an atomic insert of a ``running`` SyncRun, so two
    workers can never sync the same Source at once.
    """

    def __init__(
        self,
        config: Config,
        storage: Storage,
        client: UpstreamClient,
        adapter_lookup: AdapterLookup = get_adapter_class,
    ) -> None:
        self._config = config
        self._storage = storage
        self._client = client
        self._adapter_lookup = adapter_lookup

    def build_adapter(self, source: Source) -> SourceAdapter:
        adapter_cls = self._adapter_lookup(source.kind)
        if adapter_cls is None:
            raise ConfigurationError(f"No adapter registered for source kind '{source.kind}'")
        return adapter_cls(
            self._client,
            max_items=self._config.max_items_per_source,
            credential=self._config.credentials().get(source.kind),
        )

    # ------------------------------------------------------------------
    # Single source
    # ------------------------------------------------------------------
    def sync_source(self, source: Source) -> SyncRun:
        """Sync one Source to completion and return its finished SyncRun.

        Raises SyncAlreadyRunning if the Source already has a running SyncRun.
        """
        try:
            adapter = self.build_adapter(source)
            adapter.validate(source)
        except ConfigurationError as exc:
            run = self._storage.start_run(source.id)
            logger.error("Source %s disabled: %s", source.id, exc)
            return self._finish(run, source, SyncCounts(), str(exc), disable_now=True)

        run = self._storage.start_run(source.id)
        counts = SyncCounts()
        logger.info("Sync started for %s source %s (%s)", source.kind, source.id, source.origin_url)

        error: str | None = None
        try:
            for item in adapter.fetch(source):
                self._process_item(item, source, counts)
        except (FetchError, ParseError) as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.warning("Sync failed for source %s: %s", source.id, error)
        except Exception as exc:
            error = f"Unexpected {type(exc).__name__}: {exc}"
            logger.exception("Unexpected error syncing source %s", source.id)

        return self._finish(run, source, counts, error)

    def _finish(
        self,
        run: SyncRun,
        source: Source,
        counts: SyncCounts,
        error: str | None,
        disable_now: bool = False,
    ) -> SyncRun:
        """Close a running SyncRun. The run never stays ``running`` on return."""
        try:
            if error is None:
                self._storage.finish_run_succeeded(run, counts)
                logger.info(
                    "Sync succeeded for source %s: %d saved, %d updated, %d skipped, %d errored",
                    source.id, counts.saved, counts.updated, counts.skipped, counts.errored,
                )
                return dataclasses.replace(run, status="succeeded", counts=counts)

            updated = self._storage.finish_run_failed(
                run,
                counts,
                error,
                disable_threshold=self._config.source_failure_disable_threshold,
                disable_now=disable_now,
            )
        except PersistenceError as exc:
            error = f"Could not record run outcome: {exc}"
            logger.error("Failed to finalize sync run %s for source %s: %s", run.id, source.id, exc)
            self._release(run, error)
            return dataclasses.replace(run, status="failed", counts=counts, error=error)

        if not updated.enabled and source.enabled and not disable_now:
            logger.error(
                "Source %s disabled after %d consecutive failures",
                source.id, updated.consecutive_errors,
            )
        return dataclasses.replace(run, status="failed", counts=counts, error=error)

    def _release(self, run: SyncRun, error: str) -> None:
        # One retry of a minimal update; a run still left running is failed
        # by abandon_running_runs at the next startup.
        for attempt in (1, 2):
            try:
                self._storage.release_run(run, error)
                return
            except PersistenceError as exc:
                logger.warning("Releasing sync run %s failed (attempt %d): %s", run.id, attempt, exc)
        logger.error("Sync run %s left running; it is abandoned at next startup", run.id)

    def _process_item(self, item: NormalizedItem, source: Source, counts: SyncCounts) -> None:
        try:
            outcome = self._upsert(item, source)
        except PersistenceError as exc:
            counts.errored += 1
            logger.warning("Failed to persist %s from source %s: %s", item.canonical_url, source.id, exc)
            return
        if outcome == _SAVED:
            counts.saved += 1
        elif outcome == _UPDATED:
            counts.updated += 1
        else:
            counts.skipped += 1

    def _upsert(self, item: NormalizedItem, source: Source) -> str:
        weight = self._config.score_external_weight
        fingerprint = compute_fingerprint(item)

        def rescore(engagement: Engagement):
            return score_item(item.kind, item.metrics, engagement, weight)

        # A lost insert race is re-resolved once as a match.
        for _ in range(2):
            candidates = self._storage.find_identity_candidates(item, source.kind)
            resolution = resolve_identity(item, source.kind, candidates)
            if resolution.ambiguity is not None:
                logger.warning("Identity ambiguity for %s: %s", item.canonical_url, resolution.ambiguity)

            if resolution.status == "new":
                item_id = self._storage.insert_item(
                    item, source, fingerprint=fingerprint, scores=rescore(Engagement())
                )
                if item_id is not None:
                    return _SAVED
                logger.debug("Insert conflict for %s; re-resolving", item.canonical_url)
                continue

            if self._storage.get_fingerprint(resolution.existing_id) == fingerprint:
                return _SKIPPED
            self._storage.update_item(
                resolution.existing_id, item, fingerprint=fingerprint, rescore=rescore
            )
            return _UPDATED

        raise PersistenceError(f"Could not resolve identity of {item.canonical_url} after conflict")

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------
    def run_pass(self, now: datetime | None = None) -> PassSummary:
        """Sync every eligible Source: enabled and not synced within the interval."""
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(minutes=self._config.sync_interval_minutes)).isoformat()
        sources = self._storage.eligible_sources(cutoff)
        if not sources:
            logger.info("Sync pass: no eligible sources")
            return PassSummary()
        return self._dispatch(sources)

    def trigger_source(self, source_id: str) -> SyncRun:
        """Sync one Source immediately, regardless of its last sync time."""
        return self.sync_source(self._storage.get_source(source_id))

    def trigger_all(self, force: bool = False) -> PassSummary:
        """Run a pass now. With ``force``, every enabled Source is synced."""
        if not force:
            return self.run_pass()
        return self._dispatch(self._storage.list_sources(enabled_only=True))

    def _dispatch(self, sources: list[Source]) -> PassSummary:
        summary = PassSummary(dispatched=len(sources))
        with ThreadPoolExecutor(
            max_workers=self._config.sync_workers, thread_name_prefix="feedrank-sync"
        ) as pool:
            futures = {pool.submit(self.sync_source, source): source for source in sources}
            for future in as_completed(futures):
                source = futures[future]
                try:
                    summary.add(future.result())
                except SyncAlreadyRunning:
                    summary.already_running += 1
                    logger.info("Source %s already has a running sync; skipped", source.id)
                except Exception:
                    summary.crashed += 1
                    logger.exception("Sync worker crashed for source %s", source.id)

        logger.info(
            "Sync pass complete: %d sources (%d succeeded, %d failed, %d running, %d crashed); "
            "items %d saved, %d updated, %d skipped, %d errored",
            summary.dispatched, summary.succeeded, summary.failed,
            summary.already_running, summary.crashed,
            summary.counts.saved, summary.counts.updated,
            summary.counts.skipped, summary.counts.errored,
        )
        return summary
