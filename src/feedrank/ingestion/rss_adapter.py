"""RSS/Atom syndication feed adapter."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from html import unescape
from typing import Iterator

import feedparser

from feedrank.errors import ParseError
from feedrank.ingestion.adapter import SourceAdapter
from feedrank.ingestion.normalize import ArticleMetrics, NormalizedItem, normalize
from feedrank.models import Source

logger = logging.getLogger(__name__)

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_IMG_SRC_RE = re.compile(r"<img[^>]+src=\"([^\">]+)\"", re.IGNORECASE)
_SUMMARY_LIMIT = 500


def strip_html(text: str) -> str:
    """Remove HTML tags and unescape entities."""
    return unescape(_HTML_TAG_RE.sub("", text)).strip()


def _parse_pub_date(entry: dict) -> str | None:
    """Extract and normalize the publication date from a feed entry."""
    raw = entry.get("published") or entry.get("updated")
    if raw:
        try:
            dt = parsedate_to_datetime(raw)
            return dt.isoformat()
        except (ValueError, TypeError):
            pass
    # feedparser sometimes provides a parsed tuple
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        try:
            dt = datetime(*parsed[:6], tzinfo=timezone.utc)
            return dt.isoformat()
        except (ValueError, TypeError):
            pass
    return None


def _get_content(entry: dict) -> str:
    """Extract the best available content from a feed entry."""
    # Prefer content:encoded (full article), then summary/description
    if "content" in entry and entry["content"]:
        # feedparser puts content:encoded in entry.content[0].value
        return strip_html(entry["content"][0].get("value", ""))
    return strip_html(entry.get("summary", "") or entry.get("description", ""))


def _get_summary(entry: dict, body: str) -> str:
    summary = strip_html(entry.get("summary", "") or entry.get("description", ""))
    summary = summary or body
    if len(summary) > _SUMMARY_LIMIT:
        summary = summary[:_SUMMARY_LIMIT].rsplit(" ", 1)[0] + "…"
    return summary


def _get_image(entry: dict) -> str | None:
    """Find an image reference: enclosure, media thumbnail/content, or inline <img>."""
    for enclosure in entry.get("enclosures") or []:
        if "image" in (enclosure.get("type") or "") and enclosure.get("href"):
            return enclosure["href"]
    for key in ("media_thumbnail", "media_content"):
        for media in entry.get(key) or []:
            if media.get("url"):
                return media["url"]
    raw = ""
    if entry.get("content"):
        raw = entry["content"][0].get("value", "")
    raw = raw or entry.get("summary", "") or entry.get("description", "")
    match = _IMG_SRC_RE.search(raw)
    return match.group(1) if match else None


def _to_int(value) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def parse_feed(text: str, url: str):
    """Parse feed text. Raises ParseError when nothing feed-like was found."""
    feed = feedparser.parse(text)
    if feed.bozo and not feed.entries:
        raise ParseError(f"Malformed feed at {url}: {feed.get('bozo_exception')}")
    return feed


class RSSAdapter(SourceAdapter):
    """Adapter for RSS and Atom article feeds."""

    @property
    def name(self) -> str:
        return "syndication"

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
                logger.warning("Rejected entry from %s: %s", source.origin_url, exc)
                continue
            count += 1
            yield item
        logger.info("Fetched %d items from %s", count, source.origin_url)

    def _to_item(self, entry: dict) -> NormalizedItem:
        link = entry.get("link") or ""
        body = _get_content(entry)
        return normalize(
            "article",
            external_id=entry.get("id") or link,
            title=entry.get("title", ""),
            canonical_url=link,
            metrics=ArticleMetrics(comments=_to_int(entry.get("slash_comments"))),
            summary=_get_summary(entry, body),
            body=body,
            author=entry.get("author", ""),
            published_at=_parse_pub_date(entry),
            media={"image": _get_image(entry)},
            tags=[t.get("term", "") for t in entry.get("tags") or [] if t.get("term")],
        )
