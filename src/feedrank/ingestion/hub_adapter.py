"""Model hub adapter — fetches model listings from the Hugging Face Hub API."""

from __future__ import annotations

import logging
from typing import Iterator
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from feedrank.errors import ConfigurationError, ParseError
from feedrank.ingestion.adapter import SourceAdapter
from feedrank.ingestion.normalize import ModelMetrics, NormalizedItem, normalize
from feedrank.models import Source

logger = logging.getLogger(__name__)

_HUB_HOST = "huggingface.co"
_HUB_WEB = "https://huggingface.co"

_CATEGORY_MAP = {
    "text-generation": "Text Generation",
    "text2text-generation": "Text Generation",
    "conversational": "Conversational AI",
    "question-answering": "Question Answering",
    "summarization": "Text Summarization",
    "translation": "Translation",
    "text-classification": "Text Classification",
    "token-classification": "Token Classification",
    "fill-mask": "Fill Mask",
    "image-classification": "Image Classification",
    "object-detection": "Object Detection",
    "image-segmentation": "Image Segmentation",
    "text-to-image": "Image Generation",
    "image-to-text": "Image Captioning",
    "automatic-speech-recognition": "Speech Recognition",
    "text-to-speech": "Text to Speech",
    "audio-classification": "Audio Classification",
    "code": "Code Generation",
    "code-generation": "Code Generation",
    "reinforcement-learning": "Reinforcement Learning",
    "tabular": "Tabular Data",
    "time-series": "Time Series",
}


def _format_category(tag: str) -> str:
    return " ".join(word.capitalize() for word in tag.split("-"))


def extract_categories(tags: list[str] | None, pipeline_tag: str | None) -> list[str]:
    """Map hub tags and the pipeline tag to display categories, in first-seen order."""
    categories: list[str] = []

    def _add(category: str) -> None:
        if category not in categories:
            categories.append(category)

    if pipeline_tag:
        _add(_CATEGORY_MAP.get(pipeline_tag, _format_category(pipeline_tag)))
    for tag in tags or []:
        normalized = str(tag).lower()
        if normalized in _CATEGORY_MAP:
            _add(_CATEGORY_MAP[normalized])
        elif "llm" in normalized or "language-model" in normalized:
            _add("Large Language Model")
        elif "diffusion" in normalized:
            _add("Image Generation")
        elif "embedding" in normalized:
            _add("Embeddings")
    return categories


def model_size(siblings: list[dict] | None) -> int:
    """Approximate model size in bytes from the listed repository files."""
    return sum(int(s.get("size") or 0) for s in siblings or [] if isinstance(s, dict))


class ModelHubAdapter(SourceAdapter):
    """Adapter for Hugging Face Hub model listings.

    The Source origin URL is a listing endpoint such as
    ``https://huggingface.co/api/models?sort=downloads&direction=-1``; its
    query parameters are passed through.
    """

    @property
    def name(self) -> str:
        return "hub"

    def validate(self, source: Source) -> None:
        super().validate(source)
        parts = urlsplit(source.origin_url)
        if parts.netloc.lower() != _HUB_HOST or not parts.path.startswith("/api/models"):
            raise ConfigurationError(
                f"Hub origin must be a {_HUB_HOST}/api/models listing, got '{source.origin_url}'"
            )

    def fetch(self, source: Source) -> Iterator[NormalizedItem]:
        parts = urlsplit(source.origin_url)
        base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        params = dict(parse_qsl(parts.query))
        params.setdefault("full", "true")
        params["limit"] = str(self._max_items)

        headers = {"Accept": "application/json"}
        if self._credential:
            headers["Authorization"] = f"Bearer {self._credential}"

        models = self._client.get_json(
            self.name, base, timeout=source.timeout_seconds, params=params, headers=headers
        )
        if not isinstance(models, list):
            raise ParseError(f"Expected a list of models from {base}, got {type(models).__name__}")

        count = 0
        for model in models[: self._max_items]:
            try:
                item = self._to_item(model)
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("Rejected hub model from %s: %s", base, exc)
                continue
            count += 1
            yield item
        logger.info("Fetched %d models from %s", count, base)

    def _to_item(self, model: dict) -> NormalizedItem:
        model_id = model.get("id") or model.get("modelId") or ""
        author = model.get("author") or (model_id.split("/")[0] if "/" in model_id else "")
        pipeline_tag = model.get("pipeline_tag")
        library = model.get("library_name")
        summary = " · ".join(part for part in (pipeline_tag, library) if part)
        return normalize(
            "model",
            external_id=model_id,
            title=model_id.split("/")[-1],
            canonical_url=f"{_HUB_WEB}/{model_id}",
            metrics=ModelMetrics(
                downloads=int(model.get("downloads") or 0),
                likes=int(model.get("likes") or 0),
                trending=bool(model.get("trending")),
                model_size=model_size(model.get("siblings")),
            ),
            summary=summary,
            author=author,
            published_at=model.get("createdAt") or model.get("lastModified"),
            tags=extract_categories(model.get("tags"), pipeline_tag),
        )
