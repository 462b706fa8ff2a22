"""Tests for feedrank.ingestion.hub_adapter — model hub listing adapter."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from feedrank.errors import ConfigurationError, ParseError
from feedrank.ingestion.http import UpstreamClient
from feedrank.ingestion.hub_adapter import ModelHubAdapter, extract_categories, model_size
from feedrank.ingestion.normalize import ModelMetrics
from feedrank.ingestion.ratelimit import RateLimiter, ResponseCache
from feedrank.models import Source

LISTING_URL = "https://huggingface.co/api/models?sort=downloads&direction=-1"


def _make_model(model_id="meta-llama/Llama-3-8B", downloads=1_000_000, likes=500,
                trending=True, pipeline_tag="text-generation", tags=None, siblings=None):
    return {
        "id": model_id,
        "author": model_id.split("/")[0],
        "downloads": downloads,
        "likes": likes,
        "trending": trending,
        "pipeline_tag": pipeline_tag,
        "library_name": "transformers",
        "tags": tags if tags is not None else ["llm", "pytorch"],
        "siblings": siblings if siblings is not None else [{"rfilename": "a.bin", "size": 1024}],
        "createdAt": "2024-04-18T00:00:00.000Z",
    }


def _mock_get(payload):
    """Build a side_effect for httpx.get that returns a JSON payload."""
    def side_effect(url, **kwargs):
        resp = MagicMock()
        resp.status_code = 200
        resp.text = json.dumps(payload)
        resp.raise_for_status = MagicMock()
        return resp
    return side_effect


def _source(url=LISTING_URL):
    return Source(id="src-hub", kind="hub", origin_url=url)


def _make_adapter(max_items=50, token=None):
    client = UpstreamClient(RateLimiter(100, 60), ResponseCache(0))
    return ModelHubAdapter(client, max_items=max_items, credential=token)


class TestHelpers:
    def test_pipeline_tag_mapped(self):
        assert extract_categories([], "text-to-image") == ["Image Generation"]

    def test_unknown_pipeline_tag_titlecased(self):
        assert extract_categories([], "depth-estimation") == ["Depth Estimation"]

    def test_tags_mapped_without_duplicates(self):
        categories = extract_categories(["llm", "text-generation", "stable-diffusion"], "text-generation")
        assert categories == ["Text Generation", "Large Language Model", "Image Generation"]

    def test_no_tags(self):
        assert extract_categories(None, None) == []

    def test_model_size_sums_siblings(self):
        assert model_size([{"size": 100}, {"size": 50}, {"rfilename": "x"}]) == 150

    def test_model_size_missing(self):
        assert model_size(None) == 0


class TestModelHubAdapter:
    def test_name(self):
        assert _make_adapter().name == "hub"

    def test_validate_rejects_other_hosts(self):
        with pytest.raises(ConfigurationError):
            _make_adapter().validate(_source("https://example.com/api/models"))

    def test_validate_rejects_non_listing_path(self):
        with pytest.raises(ConfigurationError):
            _make_adapter().validate(_source("https://huggingface.co/meta-llama"))

    def test_fetch_normalizes_models(self):
        payload = [_make_model()]
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(payload)):
            items = list(_make_adapter().fetch(_source()))

        assert len(items) == 1
        model = items[0]
        assert model.kind == "model"
        assert model.external_id == "meta-llama/Llama-3-8B"
        assert model.title == "Llama-3-8B"
        assert model.canonical_url == "https://huggingface.co/meta-llama/Llama-3-8B"
        assert model.author == "meta-llama"
        assert model.metrics == ModelMetrics(
            downloads=1_000_000, likes=500, trending=True, model_size=1024
        )
        assert "Text Generation" in model.tags
        assert model.published_at == "2024-04-18T00:00:00+00:00"

    def test_query_params_passed_through(self):
        with patch(
            "feedrank.ingestion.http.httpx.get", side_effect=_mock_get([])
        ) as mock_get:
            list(_make_adapter(max_items=25).fetch(_source()))

        args, kwargs = mock_get.call_args
        assert args[0] == "https://huggingface.co/api/models"
        assert kwargs["params"] == {
            "sort": "downloads",
            "direction": "-1",
            "full": "true",
            "limit": "25",
        }
        assert "Authorization" not in kwargs["headers"]

    def test_token_sent_when_configured(self):
        with patch(
            "feedrank.ingestion.http.httpx.get", side_effect=_mock_get([])
        ) as mock_get:
            list(_make_adapter(token="hf_secret").fetch(_source()))
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer hf_secret"

    def test_invalid_records_skipped(self):
        payload = [{"downloads": 5}, _make_model(model_id="org/good")]
        with patch("feedrank.ingestion.http.httpx.get", side_effect=_mock_get(payload)):
            items = list(_make_adapter().fetch(_source()))
        assert [i.external_id for i in items] == ["org/good"]

    def test_non_list_payload_raises_parse_error(self):
        with patch(
            "feedrank.ingestion.http.httpx.get",
            side_effect=_mock_get({"error": "Invalid credentials"}),
        ):
            with pytest.raises(ParseError):
                list(_make_adapter().fetch(_source()))
