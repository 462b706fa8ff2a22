"""Tests for feedrank.ingestion.channel_adapter — video channel feed adapter."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from feedrank.errors import ConfigurationError
from feedrank.ingestion.channel_adapter import (
    ChannelFeedAdapter,
    channel_feed_url,
    embed_url,
    extract_channel_id,
    is_valid_video_id,
    thumbnail_url,
)
from feedrank.ingestion.http import UpstreamClient
from feedrank.ingestion.ratelimit import RateLimiter, ResponseCache
from feedrank.models import Source

CHANNEL_ID = "UC_x5XG1OV2P6uZZ5FSM9Ttw"
FEED_URL = f"https://www.youtube.com/feeds/videos.xml?channel_id={CHANNEL_ID}"

SAMPLE_FEED = f"""\
<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015"
      xmlns:media="http://search.yahoo.com/mrss/"
      xmlns="http://www.w3.org/2005/Atom">
  <title>Google for Developers</title>
  <entry>
    <id>yt:video:dQw4w9WgXcQ</id>
    <yt:videoId>dQw4w9WgXcQ</yt:videoId>
    <yt:channelId>{CHANNEL_ID}</yt:channelId>
    <title>Building Agents</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=dQw4w9WgXcQ"/>
    <author><name>Google for Developers</name></author>
    <published>2025-06-15T10:00:00+00:00</published>
    <media:group>
      <media:title>Building Agents</media:title>
      <media:description>How to build agents.</media:description>
      <media:community>
        <media:starRating count="2500" average="5.00" min="1" max="5"/>
        <media:statistics views="125000"/>
      </media:community>
    </media:group>
  </entry>
  <entry>
    <id>yt:video:bad</id>
    <yt:videoId>bad</yt:videoId>
    <title>Broken Video</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=bad"/>
  </entry>
</feed>
"""


def _mock_get(url, **kwargs):
    class MockResponse:
        status_code = 200
        text = SAMPLE_FEED

        def raise_for_status(self):
            pass

    return MockResponse()


def _source(url=FEED_URL):
    return Source(id="src-yt", kind="channel", origin_url=url)


def _make_adapter():
    return ChannelFeedAdapter(UpstreamClient(RateLimiter(100, 60), ResponseCache(0)))


class TestHelpers:
    def test_extract_channel_id(self):
        assert extract_channel_id(FEED_URL) == CHANNEL_ID

    def test_extract_channel_id_rejects_other_urls(self):
        assert extract_channel_id("https://www.youtube.com/@GoogleDevelopers") is None
        assert extract_channel_id("https://example.com/feeds/videos.xml?channel_id=x") is None

    def test_channel_feed_url_roundtrip(self):
        assert extract_channel_id(channel_feed_url(CHANNEL_ID)) == CHANNEL_ID

    def test_video_id_validation(self):
        assert is_valid_video_id("dQw4w9WgXcQ")
        assert not is_valid_video_id("short")
        assert not is_valid_video_id(None)
        assert not is_valid_video_id("dQw4w9WgXc!")

    def test_media_urls(self):
        assert embed_url("dQw4w9WgXcQ") == "https://www.youtube.com/embed/dQw4w9WgXcQ"
        assert thumbnail_url("dQw4w9WgXcQ") == "https://img.youtube.com/vi/dQw4w9WgXcQ/hqdefault.jpg"


class TestChannelFeedAdapter:
    def test_name(self):
        assert _make_adapter().name == "channel"

    def test_validate_accepts_channel_feed(self):
        _make_adapter().validate(_source())

    def test_validate_requires_channel_id(self):
        with pytest.raises(ConfigurationError, match="channel_id"):
            _make_adapter().validate(_source("https://www.youtube.com/feeds/videos.xml"))

    @patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get)
    def test_fetch_normalizes_video(self, mock_get):
        items = list(_make_adapter().fetch(_source()))
        assert len(items) == 1
        video = items[0]
        assert video.kind == "video"
        assert video.external_id == "dQw4w9WgXcQ"
        assert video.title == "Building Agents"
        assert video.canonical_url == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert video.author == "Google for Developers"
        assert video.published_at == "2025-06-15T10:00:00+00:00"
        assert video.media["embed"] == embed_url("dQw4w9WgXcQ")
        assert video.media["thumbnail"] == thumbnail_url("dQw4w9WgXcQ")

    @patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get)
    def test_statistics_become_metrics(self, mock_get):
        video = next(iter(_make_adapter().fetch(_source())))
        assert video.metrics.views == 125000
        assert video.metrics.ratings == 2500
