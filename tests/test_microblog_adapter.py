"""Tests for feedrank.ingestion.microblog_adapter — microblog account adapter."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from feedrank.errors import ConfigurationError, ParseError
from feedrank.ingestion.http import UpstreamClient
from feedrank.ingestion.microblog_adapter import MicroblogAdapter, extract_username
from feedrank.ingestion.normalize import PostMetrics
from feedrank.ingestion.ratelimit import RateLimiter, ResponseCache
from feedrank.models import Source

SAMPLE_RESPONSE = {
    "data": [
        {
            "id": "1790000000000000001",
            "text": "Shipping a new model today.\nDetails in the thread.",
            "author_id": "42",
            "created_at": "2025-06-15T10:00:00.000Z",
            "public_metrics": {"like_count": 120, "retweet_count": 30, "reply_count": 12},
        },
        {
            "id": "1790000000000000002",
            "text": "   ",
            "author_id": "42",
            "created_at": "2025-06-15T11:00:00.000Z",
            "public_metrics": {},
        },
    ],
    "includes": {
        "users": [
            {"id": "42", "username": "labnews", "name": "Lab News",
             "public_metrics": {"followers_count": 250000}},
        ]
    },
}


def _mock_get(payload):
    def side_effect(url, **kwargs):
        resp = MagicMock()
        resp.status_code = 200
        resp.text = json.dumps(payload)
        resp.raise_for_status = MagicMock()
        return resp
    return side_effect


def _source(url="https://x.com/labnews"):
    return Source(id="src-x", kind="microblog", origin_url=url)


def _make_adapter(token="bearer-token", max_items=50):
    client = UpstreamClient(RateLimiter(100, 60), ResponseCache(0))
    return MicroblogAdapter(client, max_items=max_items, credential=token)


class TestExtractUsername:
    def test_x_url(self):
        assert extract_username("https://x.com/labnews") == "labnews"

    def test_twitter_url(self):
        assert extract_username("https://twitter.com/labnews/") == "labnews"

    def test_at_prefix_stripped(self):
        assert extract_username("https://x.com/@labnews") == "labnews"

    def test_rejects_status_urls(self):
        assert extract_username("https://x.com/labnews/status/1") is None

    def test_rejects_other_hosts(self):
        assert extract_username("https://example.com/labnews") is None


class TestMicroblogAdapter:
    def test_name(self):
        assert _make_adapter().name == "microblog"

    def test_validate_requires_token(self):
        with pytest.raises(ConfigurationError, match="X_BEARER_TOKEN"):
            _make_adapter(token=None).validate(_source())

    def test_validate_requires_account_url(self):
        with pytest.raises(ConfigurationError):
            _make_adapter().validate(_source("https://x.com/"))

    def test_fetch_normalizes_posts(self):
        with patch(
            "feedrank.ingestion.http.httpx.get", side_effect=_mock_get(SAMPLE_RESPONSE)
        ) as mock_get:
            items = list(_make_adapter().fetch(_source()))

        assert len(items) == 1
        post = items[0]
        assert post.kind == "post"
        assert post.external_id == "1790000000000000001"
        assert post.title == "Shipping a new model today."
        assert post.canonical_url == "https://x.com/labnews/status/1790000000000000001"
        assert post.author == "labnews"
        assert post.published_at == "2025-06-15T10:00:00+00:00"
        assert post.metrics == PostMetrics(followers=250000, likes=120, reposts=30, replies=12)

        kwargs = mock_get.call_args.kwargs
        assert kwargs["params"]["query"] == "from:labnews -is:retweet"
        assert kwargs["headers"]["Authorization"] == "Bearer bearer-token"

    def test_long_first_line_truncated_for_title(self):
        payload = {
            "data": [{
                "id": "1",
                "text": "word " * 60,
                "author_id": "42",
                "public_metrics": {},
            }],
            "includes": SAMPLE_RESPONSE["includes"],
        }
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(payload)):
            post = next(iter(_make_adapter().fetch(_source())))
        assert len(post.title) <= 121
        assert post.title.endswith("…")

    def test_no_posts(self):
        payload = {"meta": {"result_count": 0}}
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(payload)):
            assert list(_make_adapter().fetch(_source())) == []

    def test_error_payload_raises_parse_error(self):
        payload = {"errors": [{"message": "Invalid username"}]}
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(payload)):
            with pytest.raises(ParseError):
                list(_make_adapter().fetch(_source()))
