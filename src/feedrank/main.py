"""Application entry point — runs the sync scheduler in a single process."""

from __future__ import annotations

import json
import logging
import sys

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from feedrank.admin import AdminService
from feedrank.config import Config, load_config
from feedrank.ingestion.http import UpstreamClient
from feedrank.ingestion.ratelimit import RateLimiter, ResponseCache
from feedrank.ingestion.registry import registered_kinds
from feedrank.orchestrator import SyncOrchestrator
from feedrank.storage import Storage

logger = logging.getLogger("feedrank")


def _setup_logging(log_level: str, log_format: str) -> None:
    """Configure root logger based on config."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps(
                {
                    "time": "%(asctime)s",
                    "level": "%(levelname)s",
                    "logger": "%(name)s",
                    "thread": "%(threadName)s",
                    "message": "%(message)s",
                }
            )
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s"
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)


def build_orchestrator(config: Config, storage: Storage) -> SyncOrchestrator:
    """Wire the process-wide limiter and cache into an orchestrator."""
    client = UpstreamClient(
        RateLimiter(config.rate_limit_requests, config.rate_limit_window_seconds),
        ResponseCache(config.response_cache_ttl_seconds),
    )
    return SyncOrchestrator(config, storage, client)


def _build_scheduler(config: Config, orchestrator: SyncOrchestrator) -> BlockingScheduler:
    """Create a BlockingScheduler with the interval sync pass."""
    scheduler = BlockingScheduler()
    scheduler.add_job(
        orchestrator.run_pass,
        trigger=IntervalTrigger(minutes=config.sync_interval_minutes),
        id="sync_pass",
        name="Source sync pass",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def main() -> None:
    """Load config, set up logging, open storage, and run the scheduler."""
    config = load_config()

    _setup_logging(config.log_level, config.log_format)

    logger.info(
        "Feedrank starting (env=%s, db=%s, interval=%dm, workers=%d)",
        config.app_env,
        config.database_path,
        config.sync_interval_minutes,
        config.sync_workers,
    )
    logger.info("Adapters registered for: %s", ", ".join(registered_kinds()))

    storage = Storage(config.database_path)
    storage.initialize()
    storage.abandon_running_runs()

    orchestrator = build_orchestrator(config, storage)
    if config.sources_config_path:
        admin = AdminService(storage, orchestrator, config.fetch_timeout_seconds)
        admin.seed_sources(config.sources_config_path)

    scheduler = _build_scheduler(config, orchestrator)

    logger.info("Running initial sync pass")
    try:
        orchestrator.run_pass()
    except Exception:
        logger.exception("Initial sync pass failed; scheduler will continue")

    logger.info("Scheduler starting")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler shutting down")
    finally:
        storage.close()


if __name__ == "__main__":
    main()
