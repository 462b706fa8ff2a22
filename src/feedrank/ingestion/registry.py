"""Source kind to adapter class table, filled when feedrank.ingestion is imported."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from feedrank.models import SOURCE_KINDS

if TYPE_CHECKING:
    from feedrank.ingestion.adapter import SourceAdapter

logger = logging.getLogger(__name__)

_REGISTRY: dict[str, type[SourceAdapter]] = {}


def register_adapter(kind: str, cls: type[SourceAdapter]) -> None:
    """Bind ``cls`` to a Source kind. Raises ValueError for unknown kinds."""
    if kind not in SOURCE_KINDS:
        raise ValueError(f"Unknown source kind '{kind}'; expected one of {', '.join(SOURCE_KINDS)}")
    previous = _REGISTRY.get(kind)
    if previous is not None and previous is not cls:
        logger.info("Adapter for %s replaced: %s -> %s", kind, previous.__name__, cls.__name__)
    _REGISTRY[kind] = cls


def get_adapter_class(kind: str) -> type[SourceAdapter] | None:
    return _REGISTRY.get(kind)


def registered_kinds() -> list[str]:
    """Kinds with an adapter, in SOURCE_KINDS order."""
    return [kind for kind in SOURCE_KINDS if kind in _REGISTRY]
