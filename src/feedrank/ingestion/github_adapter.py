"""Repository hub adapter — fetches repositories via the GitHub Search API."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterator
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from feedrank.errors import ConfigurationError, ParseError
from feedrank.ingestion.adapter import SourceAdapter
from feedrank.ingestion.normalize import NormalizedItem, RepoMetrics, normalize_timestamp, normalize
from feedrank.models import Source

logger = logging.getLogger(__name__)

_GITHUB_API_HOST = "api.github.com"
_SEARCH_PATH = "/search/repositories"
_TRENDING_WINDOW_DAYS = 30
_TRENDING_MIN_STARS = 1000


def _now() -> datetime:
    return datetime.now(timezone.utc)


def is_trending(stars: int, created_at: str | None) -> bool:
    """A repository is trending when it is young and already well-starred.

    Evaluated at fetch time, so an unchanged repository stops trending once it
    ages past the window and its next sync counts it as updated.
    """
    if stars < _TRENDING_MIN_STARS or not created_at:
        return False
    try:
        created = datetime.fromisoformat(normalize_timestamp(created_at))
    except (TypeError, ValueError):
        return False
    return _now() - created <= timedelta(days=_TRENDING_WINDOW_DAYS)


class GitHubSearchAdapter(SourceAdapter):
    """Adapter for GitHub repository search listings.

    The Source origin URL carries the search query, for example
    ``https://api.github.com/search/repositories?q=topic:llm&sort=stars``.
    """

    @property
    def name(self) -> str:
        return "repository"

    def validate(self, source: Source) -> None:
        super().validate(source)
        parts = urlsplit(source.origin_url)
        if parts.netloc.lower() != _GITHUB_API_HOST or parts.path != _SEARCH_PATH:
            raise ConfigurationError(
                f"Repository origin must be https://{_GITHUB_API_HOST}{_SEARCH_PATH}, "
                f"got '{source.origin_url}'"
            )
        if not dict(parse_qsl(parts.query)).get("q"):
            raise ConfigurationError(f"Repository origin '{source.origin_url}' has no q= query")

    def fetch(self, source: Source) -> Iterator[NormalizedItem]:
        parts = urlsplit(source.origin_url)
        base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        params = dict(parse_qsl(parts.query))
        params.setdefault("sort", "stars")
        params.setdefault("order", "desc")
        params["per_page"] = str(min(100, self._max_items))

        headers: dict[str, str] = {"Accept": "application/vnd.github+json"}
        if self._credential:
            headers["Authorization"] = f"Bearer {self._credential}"

        data = self._client.get_json(
            self.name, base, timeout=source.timeout_seconds, params=params, headers=headers
        )
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise ParseError(f"Expected a search result with 'items' from {base}")

        count = 0
        for repo in data["items"][: self._max_items]:
            try:
                item = self._to_item(repo)
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("Rejected repository from %s: %s", base, exc)
                continue
            count += 1
            yield item
        logger.info("Fetched %d repositories for q=%s", count, params.get("q"))

    def _to_item(self, repo: dict) -> NormalizedItem:
        repo_id = repo.get("id")
        if repo_id is None:
            raise ValueError("repository has no id")
        full_name = (repo.get("full_name") or "").strip()
        if not full_name:
            raise ValueError(f"repository {repo_id} has no full_name")

        stars = int(repo.get("stargazers_count") or 0)
        description = repo.get("description") or ""
        language = repo.get("language") or "Unknown"
        owner = (repo.get("owner") or {}).get("login") or full_name.split("/")[0]
        avatar = (repo.get("owner") or {}).get("avatar_url")
        return normalize(
            "repo",
            external_id=repo_id,
            title=full_name,
            canonical_url=repo.get("html_url") or f"https://github.com/{full_name}",
            metrics=RepoMetrics(
                stars=stars,
                forks=int(repo.get("forks_count") or 0),
                open_issues=int(repo.get("open_issues_count") or 0),
                trending=is_trending(stars, repo.get("created_at")),
            ),
            summary=f"{description} | {language}" if description else language,
            body=description,
            author=owner,
            published_at=repo.get("created_at"),
            media={"avatar": avatar},
            tags=repo.get("topics") or [],
        )
