"""Microblog adapter — recent posts from one X account via the v2 search API."""

from __future__ import annotations

import logging
import re
from typing import Iterator
from urllib.parse import urlsplit

from feedrank.errors import ConfigurationError, ParseError
from feedrank.ingestion.adapter import SourceAdapter
from feedrank.ingestion.normalize import NormalizedItem, PostMetrics, normalize
from feedrank.models import Source

logger = logging.getLogger(__name__)

_SEARCH_URL = "https://api.twitter.com/2/tweets/search/recent"
_ACCOUNT_HOSTS = {"x.com", "www.x.com", "twitter.com", "www.twitter.com"}
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{1,15}$")
_TITLE_LIMIT = 120


def extract_username(origin_url: str) -> str | None:
    """Return the account handle of an ``https://x.com/<username>`` URL, or None."""
    parts = urlsplit(origin_url)
    if parts.netloc.lower() not in _ACCOUNT_HOSTS:
        return None
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) != 1 or not _USERNAME_RE.match(segments[0].lstrip("@")):
        return None
    return segments[0].lstrip("@")


def _post_title(text: str) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    if len(first_line) > _TITLE_LIMIT:
        first_line = first_line[:_TITLE_LIMIT].rsplit(" ", 1)[0] + "…"
    return first_line


class MicroblogAdapter(SourceAdapter):
    """Adapter for a single microblog account. Requires a bearer token."""

    @property
    def name(self) -> str:
        return "microblog"

    def validate(self, source: Source) -> None:
        super().validate(source)
        if extract_username(source.origin_url) is None:
            raise ConfigurationError(
                f"Microblog origin must be https://x.com/<username>, got '{source.origin_url}'"
            )
        if not self._credential:
            raise ConfigurationError("X_BEARER_TOKEN is not configured")

    def fetch(self, source: Source) -> Iterator[NormalizedItem]:
        username = extract_username(source.origin_url)
        params = {
            "query": f"from:{username} -is:retweet",
            "max_results": str(min(100, max(10, self._max_items))),
            "tweet.fields": "created_at,public_metrics,author_id",
            "expansions": "author_id",
            "user.fields": "name,username,public_metrics",
        }
        headers = {"Authorization": f"Bearer {self._credential}"}

        data = self._client.get_json(
            self.name, _SEARCH_URL, timeout=source.timeout_seconds, params=params, headers=headers
        )
        if not isinstance(data, dict):
            raise ParseError(f"Expected a JSON object from {_SEARCH_URL}")
        if "data" not in data and data.get("errors"):
            raise ParseError(f"Search for @{username} returned errors: {data['errors']}")

        users = {
            u.get("id"): u
            for u in (data.get("includes") or {}).get("users") or []
            if isinstance(u, dict)
        }

        count = 0
        for post in (data.get("data") or [])[: self._max_items]:
            try:
                item = self._to_item(post, users, username)
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("Rejected post from @%s: %s", username, exc)
                continue
            count += 1
            yield item
        logger.info("Fetched %d posts from @%s", count, username)

    def _to_item(self, post: dict, users: dict, username: str) -> NormalizedItem:
        post_id = post.get("id")
        text = post.get("text") or ""
        metrics = post.get("public_metrics") or {}
        user = users.get(post.get("author_id")) or {}
        handle = user.get("username") or username
        return normalize(
            "post",
            external_id=post_id,
            title=_post_title(text),
            canonical_url=f"https://x.com/{handle}/status/{post_id}",
            metrics=PostMetrics(
                followers=int((user.get("public_metrics") or {}).get("followers_count") or 0),
                likes=int(metrics.get("like_count") or 0),
                reposts=int(metrics.get("retweet_count") or 0),
                replies=int(metrics.get("reply_count") or 0),
            ),
            summary=text,
            body=text,
            author=handle,
            published_at=post.get("created_at"),
        )
