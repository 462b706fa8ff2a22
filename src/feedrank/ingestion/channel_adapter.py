"""Video-channel feed adapter — YouTube channel Atom feeds."""

from __future__ import annotations

import logging
import re
from typing import Iterator
from urllib.parse import parse_qs, urlsplit

from feedrank.errors import ConfigurationError
from feedrank.ingestion.adapter import SourceAdapter
from feedrank.ingestion.normalize import NormalizedItem, VideoMetrics, normalize
from feedrank.ingestion.rss_adapter import _get_content, _parse_pub_date, _to_int, parse_feed
from feedrank.models import Source

logger = logging.getLogger(__name__)

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_FEED_PATH = "/feeds/videos.xml"


def extract_channel_id(feed_url: str) -> str | None:
    """Return the channel_id of a channel feed URL, or None."""
    parts = urlsplit(feed_url)
    if not parts.netloc.endswith("youtube.com") or parts.path != _FEED_PATH:
        return None
    values = parse_qs(parts.query).get("channel_id")
    return values[0] if values else None


def channel_feed_url(channel_id: str) -> str:
    return f"https://www.youtube.com{_FEED_PATH}?channel_id={channel_id}"


def is_valid_video_id(video_id: str | None) -> bool:
    return bool(video_id) and bool(_VIDEO_ID_RE.match(video_id))


def embed_url(video_id: str) -> str:
    return f"https://www.youtube.com/embed/{video_id}"


def thumbnail_url(video_id: str) -> str:
    return f"https://img.youtube.com/vi/{video_id}/hqdefault.jpg"


class ChannelFeedAdapter(SourceAdapter):
    """Adapter for a single video channel's upload feed."""

    @property
    def name(self) -> str:
        return "channel"

    def validate(self, source: Source) -> None:
        super().validate(source)
        if not extract_channel_id(source.origin_url):
            raise ConfigurationError(
                f"Channel feed URL must look like {channel_feed_url('<id>')}, "
                f"got '{source.origin_url}'"
            )

    def fetch(self, source: Source) -> Iterator[NormalizedItem]:
        text = self._client.get_text(
            self.name, source.origin_url, timeout=source.timeout_seconds
        )
        feed = parse_feed(text, source.origin_url)

        count = 0
        for entry in feed.entries[: self._max_items]:
            try:
                item = self._to_item(entry)
            except ValueError as exc:
                logger.warning("Rejected video from %s: %s", source.origin_url, exc)
                continue
            count += 1
            yield item
        logger.info("Fetched %d videos from %s", count, source.origin_url)

    def _to_item(self, entry: dict) -> NormalizedItem:
        video_id = entry.get("yt_videoid")
        if not is_valid_video_id(video_id):
            raise ValueError(f"missing or malformed video id {video_id!r}")

        statistics = entry.get("media_statistics") or {}
        rating = entry.get("media_starrating") or {}
        description = _get_content(entry)
        return normalize(
            "video",
            external_id=video_id,
            title=entry.get("title", ""),
            canonical_url=entry.get("link") or f"https://www.youtube.com/watch?v={video_id}",
            metrics=VideoMetrics(
                views=_to_int(statistics.get("views")),
                ratings=_to_int(rating.get("count")),
            ),
            summary=description,
            body=description,
            author=entry.get("author", ""),
            published_at=_parse_pub_date(entry),
            media={"embed": embed_url(video_id), "thumbnail": thumbnail_url(video_id)},
        )
