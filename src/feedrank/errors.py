"""Error taxonomy for ingestion, identity resolution, and persistence."""

from __future__ import annotations


class FeedrankError(Exception):
    """Base class for all feedrank errors."""


class FetchError(FeedrankError):
    """Upstream could not be reached: network failure, timeout, or non-2xx status."""


class ParseError(FeedrankError):
    """Upstream payload was malformed or had an unrecognized shape."""


class PersistenceError(FeedrankError):
    """A single storage write failed."""


class ConfigurationError(FeedrankError):
    """A Source cannot be synced as configured (bad origin URL, missing credential)."""


class SyncAlreadyRunning(FeedrankError):
    """A SyncRun for the Source is already in the running state."""


class SourceNotFound(FeedrankError):
    """No Source exists with the requested id."""


class IdentityAmbiguity(FeedrankError):
    """Different identity rules matched different stored items.

    Resolved by rule precedence and attached to the resolution for logging.
    Never raised.
    """

    def __init__(self, chosen_id: str, rule: str, conflicts: dict[str, str]) -> None:
        self.chosen_id = chosen_id
        self.rule = rule
        self.conflicts = conflicts
        others = ", ".join(f"{r}={i}" for r, i in sorted(conflicts.items()))
        super().__init__(f"matched {chosen_id} by {rule}; also matched {others}")


class ItemNotFound(FeedrankError):
    """No ContentItem exists with the requested id."""
