"""Ranking scores — external (upstream), local (engagement), and their blend.

All functions are pure: identical inputs always produce identical scores.

External score, per item kind::

    min(log10(volume + 1) / log10(ceiling + 1) * C1, C1)
    + min(secondary / L * C2, C2)
    + (B if trending else 0)

capped at 100, with C1 = 70, C2 = 20 and B = 10 for every kind:

    ========  =========================  ==============================
    kind      volume metric (ceiling)    secondary metric (L)
    ========  =========================  ==============================
    model     downloads (10,000,000)     likes (1,000)
    repo      stars (100,000)            forks (10,000)
    video     views (10,000,000)         ratings (10,000)
    post      followers (10,000,000)     likes + reposts + replies (1,000)
    article   comments (1,000)           none
    ========  =========================  ==============================

Local score: mean rating / 5 * 80 once anyone has voted, plus a volume bonus
of up to 20 from votes, likes, bookmarks (x2) and views (/10) per 100.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from feedrank.ingestion.normalize import (
    ArticleMetrics,
    Metrics,
    ModelMetrics,
    PostMetrics,
    RepoMetrics,
    VideoMetrics,
)

DEFAULT_EXTERNAL_WEIGHT = 0.85
MAX_SCORE = 100.0


@dataclass(frozen=True)
class ExternalProfile:
    volume_ceiling: float
    volume_cap: float = 70.0
    secondary_reference: float = 0.0
    secondary_cap: float = 20.0
    trending_bonus: float = 10.0


PROFILES: dict[str, ExternalProfile] = {
    "model": ExternalProfile(volume_ceiling=10_000_000, secondary_reference=1_000),
    "repo": ExternalProfile(volume_ceiling=100_000, secondary_reference=10_000),
    "video": ExternalProfile(volume_ceiling=10_000_000, secondary_reference=10_000),
    "post": ExternalProfile(volume_ceiling=10_000_000, secondary_reference=1_000),
    "article": ExternalProfile(volume_ceiling=1_000),
}

# Local score weights
RATING_CAP = 80.0
VOLUME_BONUS_CAP = 20.0
VOLUME_REFERENCE = 100.0


@dataclass(frozen=True)
class Engagement:
    """Local engagement counters for one item."""

    likes: int = 0
    views: int = 0
    bookmarks: int = 0
    votes: int = 0
    rating: float = 0.0  # mean of 1-5 votes, 0 when no votes


@dataclass(frozen=True)
class Scores:
    external: float
    local: float
    final: float


def _signals(metrics: Metrics) -> tuple[float, float, bool]:
    """Return (volume, secondary, trending) for a metrics record."""
    if isinstance(metrics, ModelMetrics):
        return metrics.downloads, metrics.likes, metrics.trending
    if isinstance(metrics, RepoMetrics):
        return metrics.stars, metrics.forks, metrics.trending
    if isinstance(metrics, VideoMetrics):
        return metrics.views, metrics.ratings, False
    if isinstance(metrics, PostMetrics):
        return metrics.followers, metrics.likes + metrics.reposts + metrics.replies, False
    if isinstance(metrics, ArticleMetrics):
        return metrics.comments, 0, False
    raise TypeError(f"Unsupported metrics type: {type(metrics).__name__}")


def external_score(kind: str, metrics: Metrics) -> float:
    """Normalize upstream platform metrics to 0-100 using the kind's profile."""
    profile = PROFILES[kind]
    volume, secondary, trending = _signals(metrics)

    volume_part = min(
        math.log10(max(volume, 0) + 1) / math.log10(profile.volume_ceiling + 1) * profile.volume_cap,
        profile.volume_cap,
    )
    secondary_part = 0.0
    if profile.secondary_reference > 0:
        secondary_part = min(
            max(secondary, 0) / profile.secondary_reference * profile.secondary_cap,
            profile.secondary_cap,
        )
    bonus = profile.trending_bonus if trending else 0.0
    return min(volume_part + secondary_part + bonus, MAX_SCORE)


def local_score(engagement: Engagement) -> float:
    """Score local engagement 0-100; rating quality dominates raw volume."""
    quality = 0.0
    if engagement.votes > 0:
        rating = min(max(engagement.rating, 0.0), 5.0)
        quality = rating / 5 * RATING_CAP
    volume = (
        engagement.votes
        + engagement.likes
        + 2 * engagement.bookmarks
        + engagement.views / 10
    )
    bonus = min(volume / VOLUME_REFERENCE * VOLUME_BONUS_CAP, VOLUME_BONUS_CAP)
    return min(quality + bonus, MAX_SCORE)


def final_score(external: float, local: float, weight: float = DEFAULT_EXTERNAL_WEIGHT) -> float:
    """Blend external and local scores; external dominates by default."""
    if not 0.0 <= weight <= 1.0:
        raise ValueError(f"weight must be within [0, 1], got {weight}")
    blended = external * weight + local * (1 - weight)
    return min(max(blended, 0.0), MAX_SCORE)


def score_item(
    kind: str,
    metrics: Metrics,
    engagement: Engagement,
    weight: float = DEFAULT_EXTERNAL_WEIGHT,
) -> Scores:
    """Compute all three scores for an item from its current inputs."""
    external = external_score(kind, metrics)
    local = local_score(engagement)
    return Scores(external=external, local=local, final=final_score(external, local, weight))
