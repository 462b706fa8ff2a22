"""Source adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator
from urllib.parse import urlsplit

from feedrank.errors import ConfigurationError
from feedrank.ingestion.http import UpstreamClient
from feedrank.ingestion.normalize import NormalizedItem
from feedrank.models import Source


class SourceAdapter(ABC):
    """Abstract base class for source adapters.

    Every adapter knows how to fetch and normalize items from one source
    kind. Adapters hold no state between calls and never retry; the rest of
    the system is source-agnostic.
    """

    def __init__(
        self,
        client: UpstreamClient,
        max_items: int = 50,
        credential: str | None = None,
    ) -> None:
        self._client = client
        self._max_items = max_items
        self._credential = credential

    @property
    @abstractmethod
    def name(self) -> str:
        """Source kind handled by this adapter."""

    def validate(self, source: Source) -> None:
        """Check the Source can be fetched at all. Raises ConfigurationError."""
        parts = urlsplit(source.origin_url or "")
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(
                f"Origin URL '{source.origin_url}' is not an absolute http(s) URL"
            )

    @abstractmethod
    def fetch(self, source: Source) -> Iterator[NormalizedItem]:
        """Lazily yield normalized items in upstream order.

        Raises FetchError or ParseError; records that fail validation are
        logged and skipped.
        """
