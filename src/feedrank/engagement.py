"""Engagement mutations driven by the presentation layer.

Each mutation updates the per-user rows and the item's counters, then
recomputes local and final score in the same write transaction, from the
metrics stored at that moment.
"""

from __future__ import annotations

import logging

from feedrank.config import Config
from feedrank.ingestion.normalize import metrics_from_dict
from feedrank.scoring import Engagement, Scores, score_item
from feedrank.storage.gateway import Storage

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


class EngagementService:
    """Blends with ``config.score_external_weight``, the same weight sync uses."""

    def __init__(self, storage: Storage, config: Config) -> None:
        self._storage = storage
        self._weight = config.score_external_weight

    def _rescore(self, kind: str, metrics: dict, engagement: Engagement) -> Scores:
        return score_item(kind, metrics_from_dict(kind, metrics), engagement, self._weight)

    def record_view(self, item_id: str) -> Scores:
        return self._storage.record_view(item_id, self._rescore)

    def toggle_like(self, item_id: str, user_id: str) -> tuple[bool, Scores]:
        """Like or unlike an item. Returns (liked, scores)."""
        liked, scores = self._storage.toggle_like(item_id, user_id, self._rescore)
        logger.debug("User %s %s item %s", user_id, "liked" if liked else "unliked", item_id)
        return liked, scores

    def toggle_bookmark(self, item_id: str, user_id: str) -> tuple[bool, Scores]:
        """Bookmark or un-bookmark an item. Returns (bookmarked, scores)."""
        return self._storage.toggle_bookmark(item_id, user_id, self._rescore)

    def cast_vote(self, item_id: str, user_id: str, rating: int) -> Scores:
        """Rate an item 1-5. A user's later vote replaces the earlier one."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not (
            MIN_RATING <= rating <= MAX_RATING
        ):
            raise ValueError(f"rating must be an integer from {MIN_RATING} to {MAX_RATING}, got {rating!r}")
        return self._storage.cast_vote(item_id, user_id, rating, self._rescore)
