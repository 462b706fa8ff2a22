"""Normalized item variants — the common envelope every adapter emits."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from urllib.parse import urlsplit, urlunsplit

from feedrank.models import ITEM_KINDS


@dataclass(frozen=True)
class ArticleMetrics:
    comments: int = 0


@dataclass(frozen=True)
class VideoMetrics:
    views: int = 0
    ratings: int = 0


@dataclass(frozen=True)
class ModelMetrics:
    downloads: int = 0
    likes: int = 0
    trending: bool = False
    model_size: int = 0  # bytes


@dataclass(frozen=True)
class RepoMetrics:
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    trending: bool = False


@dataclass(frozen=True)
class PostMetrics:
    followers: int = 0
    likes: int = 0
    reposts: int = 0
    replies: int = 0


Metrics = ArticleMetrics | VideoMetrics | ModelMetrics | RepoMetrics | PostMetrics

METRICS_BY_KIND: dict[str, type] = {
    "article": ArticleMetrics,
    "video": VideoMetrics,
    "model": ModelMetrics,
    "repo": RepoMetrics,
    "post": PostMetrics,
}


@dataclass(frozen=True)
class NormalizedItem:
    """Canonical representation of one upstream record, before identity resolution."""

    kind: str
    external_id: str
    title: str
    canonical_url: str
    metrics: Metrics
    summary: str = ""
    body: str = ""
    author: str = ""
    published_at: str | None = None
    media: dict[str, str] = field(default_factory=dict)
    tags: tuple[str, ...] = ()


def canonicalize_url(url: str) -> str:
    """Trim, lowercase scheme and host, and drop the fragment."""
    parts = urlsplit(url.strip())
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, "")
    )


def normalize_timestamp(value: str | None) -> str | None:
    """Return an ISO 8601 UTC timestamp, or None when the value is missing.

    Raises ValueError for values that are present but unparseable.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def metrics_as_dict(metrics: Metrics) -> dict:
    return asdict(metrics)


def metrics_from_dict(kind: str, data: dict | None) -> Metrics:
    """Rebuild a kind's metrics record from stored JSON, ignoring unknown keys."""
    cls = METRICS_BY_KIND[kind]
    data = data or {}
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def _validate(item: NormalizedItem) -> list[str]:
    errors: list[str] = []
    if item.kind not in ITEM_KINDS:
        errors.append(f"kind '{item.kind}' is not one of: {', '.join(ITEM_KINDS)}")
    elif not isinstance(item.metrics, METRICS_BY_KIND[item.kind]):
        errors.append(
            f"metrics {type(item.metrics).__name__} do not match kind '{item.kind}'"
        )
    if not item.external_id or not item.external_id.strip():
        errors.append("external_id is required and must be non-empty")
    if not item.title or not item.title.strip():
        errors.append("title is required and must be non-empty")
    parts = urlsplit(item.canonical_url or "")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        errors.append(f"canonical_url '{item.canonical_url}' is not an absolute http(s) URL")
    for name, value in asdict(item.metrics).items():
        if isinstance(value, bool):
            continue
        if not isinstance(value, int) or value < 0:
            errors.append(f"metric '{name}' must be a non-negative integer, got {value!r}")
    return errors


def normalize(
    kind: str,
    *,
    external_id: str | int,
    title: str,
    canonical_url: str,
    metrics: Metrics,
    summary: str = "",
    body: str = "",
    author: str | None = "",
    published_at: str | None = None,
    media: dict[str, str] | None = None,
    tags: list[str] | tuple[str, ...] = (),
) -> NormalizedItem:
    """Build and validate a NormalizedItem.

    Trims text fields, canonicalizes the URL, and normalizes the timestamp.
    Raises ValueError if validation fails.
    """
    try:
        published = normalize_timestamp(published_at)
    except ValueError as exc:
        raise ValueError(f"published_at '{published_at}' is not valid ISO 8601") from exc

    item = NormalizedItem(
        kind=kind,
        external_id=str(external_id).strip() if external_id is not None else "",
        title=(title or "").strip(),
        canonical_url=canonicalize_url(canonical_url or ""),
        metrics=metrics,
        summary=(summary or "").strip(),
        body=(body or "").strip(),
        author=(author or "").strip(),
        published_at=published,
        media={k: v for k, v in (media or {}).items() if v},
        tags=tuple(tags),
    )
    errors = _validate(item)
    if errors:
        raise ValueError(f"Invalid {kind} item: {'; '.join(errors)}")
    return item
