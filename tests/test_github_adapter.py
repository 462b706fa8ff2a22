"""Tests for feedrank.ingestion.github_adapter — repository search adapter."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from feedrank.errors import ConfigurationError, FetchError, ParseError
from feedrank.ingestion.dedup import compute_fingerprint
from feedrank.ingestion.github_adapter import GitHubSearchAdapter, is_trending
from feedrank.ingestion.http import UpstreamClient
from feedrank.ingestion.normalize import RepoMetrics
from feedrank.ingestion.ratelimit import RateLimiter, ResponseCache
from feedrank.models import Source

SEARCH_URL = "https://api.github.com/search/repositories?q=topic:llm"
NOW = datetime(2026, 2, 20, 12, 0, 0, tzinfo=timezone.utc)


def _make_repo(repo_id, name="owner/repo", description="A cool open source project for developers",
               language="Python", stars=1000, forks=10, created_at="2026-02-15T10:00:00Z", topics=None):
    return {
        "id": repo_id,
        "full_name": name,
        "description": description,
        "language": language,
        "stargazers_count": stars,
        "forks_count": forks,
        "open_issues_count": 3,
        "html_url": f"https://github.com/{name}",
        "owner": {"login": name.split("/")[0], "avatar_url": "https://avatars.example.com/u/1"},
        "created_at": created_at,
        "topics": topics,
    }


def _mock_get(repos, status_code=200):
    """Build a side_effect for httpx.get that returns repos."""
    def side_effect(url, **kwargs):
        resp = MagicMock()
        resp.status_code = status_code
        resp.text = json.dumps({"total_count": len(repos), "items": repos})
        resp.raise_for_status = MagicMock()
        return resp
    return side_effect


def _source(url=SEARCH_URL):
    return Source(id="src-gh", kind="repository", origin_url=url)


def _make_adapter(max_items=50, token=None):
    client = UpstreamClient(RateLimiter(100, 60), ResponseCache(0))
    return GitHubSearchAdapter(client, max_items=max_items, credential=token)


class TestIsTrending:
    @patch("feedrank.ingestion.github_adapter._now", return_value=NOW)
    def test_young_and_popular(self, _):
        assert is_trending(1500, "2026-02-01T00:00:00Z")

    @patch("feedrank.ingestion.github_adapter._now", return_value=NOW)
    def test_too_few_stars(self, _):
        assert not is_trending(999, "2026-02-01T00:00:00Z")

    @patch("feedrank.ingestion.github_adapter._now", return_value=NOW)
    def test_too_old(self, _):
        assert not is_trending(50_000, "2025-01-01T00:00:00Z")

    @patch("feedrank.ingestion.github_adapter._now", return_value=NOW)
    def test_missing_or_bad_date(self, _):
        assert not is_trending(5000, None)
        assert not is_trending(5000, "not-a-date")



class TestFetchTimeTrending:
    def _fetch_at(self, now, repos):
        with patch("feedrank.ingestion.github_adapter._now", return_value=now), \
                patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(repos)):
            return list(_make_adapter().fetch(_source()))

    def test_unchanged_payload_is_stable_inside_window(self):
        repos = [_make_repo(1, stars=2000, created_at="2026-02-15T10:00:00Z")]
        first = self._fetch_at(NOW, repos)[0]
        later = self._fetch_at(NOW + timedelta(days=10), repos)[0]
        assert first.metrics.trending is True
        assert compute_fingerprint(first) == compute_fingerprint(later)

    def test_trending_lapses_after_window(self):
        repos = [_make_repo(1, stars=2000, created_at="2026-02-15T10:00:00Z")]
        first = self._fetch_at(NOW, repos)[0]
        aged = self._fetch_at(NOW + timedelta(days=40), repos)[0]
        assert aged.metrics.trending is False
        assert compute_fingerprint(first) != compute_fingerprint(aged)

class TestGitHubSearchAdapter:
    def test_name(self):
        assert _make_adapter().name == "repository"

    def test_validate_requires_search_endpoint(self):
        with pytest.raises(ConfigurationError):
            _make_adapter().validate(_source("https://github.com/trending"))

    def test_validate_requires_query(self):
        with pytest.raises(ConfigurationError, match="q="):
            _make_adapter().validate(_source("https://api.github.com/search/repositories?sort=stars"))

    @patch("feedrank.ingestion.github_adapter._now", return_value=NOW)
    def test_fetches_repos(self, _):
        repos = [
            _make_repo(1, "owner/repo1", "A fast Python web framework for building APIs", "Python", 2000),
            _make_repo(2, "owner/repo2", "Machine learning toolkit for data scientists", "Python", 1500,
                       created_at="2024-01-01T00:00:00Z"),
        ]
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(repos)):
            items = list(_make_adapter().fetch(_source()))

        assert len(items) == 2
        first, second = items
        assert first.kind == "repo"
        assert first.external_id == "1"
        assert first.title == "owner/repo1"
        assert first.canonical_url == "https://github.com/owner/repo1"
        assert first.author == "owner"
        assert first.summary == "A fast Python web framework for building APIs | Python"
        assert first.metrics == RepoMetrics(stars=2000, forks=10, open_issues=3, trending=True)
        assert second.metrics.trending is False

    def test_request_params(self):
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get([])) as mock_get:
            list(_make_adapter(max_items=30, token="ghp_x").fetch(_source()))

        args, kwargs = mock_get.call_args
        assert args[0] == "https://api.github.com/search/repositories"
        assert kwargs["params"] == {"q": "topic:llm", "sort": "stars", "order": "desc", "per_page": "30"}
        assert kwargs["headers"]["Authorization"] == "Bearer ghp_x"

    def test_empty_full_name_rejected(self):
        repos = [_make_repo(1, name="owner/ok"), {**_make_repo(2), "full_name": "  "}]
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(repos)):
            items = list(_make_adapter().fetch(_source()))
        assert [i.title for i in items] == ["owner/ok"]

    def test_topics_become_tags(self):
        repos = [_make_repo(1, topics=["llm", "agents"])]
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(repos)):
            item = next(iter(_make_adapter().fetch(_source())))
        assert item.tags == ("llm", "agents")

    def test_max_items(self):
        repos = [_make_repo(i, name=f"owner/repo{i}") for i in range(1, 6)]
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(repos)):
            items = list(_make_adapter(max_items=3).fetch(_source()))
        assert len(items) == 3

    def test_missing_items_raises_parse_error(self):
        def side_effect(url, **kwargs):
            resp = MagicMock()
            resp.text = json.dumps({"message": "Validation Failed"})
            resp.raise_for_status = MagicMock()
            return resp

        with patch("feedrank.ingestion.http.httpx.get", side_effect=side_effect):
            with pytest.raises(ParseError):
                list(_make_adapter().fetch(_source()))

    def test_http_error_raises_fetch_error(self):
        import httpx

        with patch("feedrank.ingestion.http.httpx.get", side_effect=httpx.ConnectError("down")):
            with pytest.raises(FetchError):
                list(_make_adapter().fetch(_source()))
