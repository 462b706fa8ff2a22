"""Tests for feedrank.ingestion.registry — adapter registry."""

from __future__ import annotations

import pytest

import feedrank.ingestion  # noqa: F401
from feedrank.ingestion.adapter import SourceAdapter
from feedrank.ingestion.channel_adapter import ChannelFeedAdapter
from feedrank.ingestion.github_adapter import GitHubSearchAdapter
from feedrank.ingestion.hub_adapter import ModelHubAdapter
from feedrank.ingestion.microblog_adapter import MicroblogAdapter
from feedrank.ingestion.registry import (
    _REGISTRY,
    get_adapter_class,
    register_adapter,
    registered_kinds,
)
from feedrank.ingestion.rss_adapter import RSSAdapter
from feedrank.models import SOURCE_KINDS


class _DummyAdapter(SourceAdapter):
    @property
    def name(self) -> str:
        return "syndication"

    def fetch(self, source):
        return iter(())


class TestRegistry:
    def setup_method(self):
        self._original = dict(_REGISTRY)

    def teardown_method(self):
        _REGISTRY.clear()
        _REGISTRY.update(self._original)

    def test_register_replaces_adapter(self):
        register_adapter("syndication", _DummyAdapter)
        assert get_adapter_class("syndication") is _DummyAdapter

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="dummy"):
            register_adapter("dummy", _DummyAdapter)
        assert get_adapter_class("dummy") is None

    def test_lookup_unknown_returns_none(self):
        assert get_adapter_class("nonexistent") is None

    def test_registered_kinds_follow_source_kinds(self):
        _REGISTRY.clear()
        register_adapter("microblog", _DummyAdapter)
        register_adapter("channel", _DummyAdapter)
        assert registered_kinds() == ["channel", "microblog"]

    def test_every_source_kind_has_adapter(self):
        assert registered_kinds() == list(SOURCE_KINDS)

    def test_builtin_adapters_registered(self):
        assert get_adapter_class("syndication") is RSSAdapter
        assert get_adapter_class("channel") is ChannelFeedAdapter
        assert get_adapter_class("hub") is ModelHubAdapter
        assert get_adapter_class("repository") is GitHubSearchAdapter
        assert get_adapter_class("microblog") is MicroblogAdapter

    def test_adapter_names_match_registered_kind(self):
        for kind in SOURCE_KINDS:
            adapter = get_adapter_class(kind)(client=None)
            assert adapter.name == kind
