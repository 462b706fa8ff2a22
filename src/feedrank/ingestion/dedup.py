"""Identity resolution and change fingerprints for normalized items."""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable

from feedrank.errors import IdentityAmbiguity
from feedrank.ingestion.normalize import NormalizedItem, metrics_as_dict

# Precedence order; the first rule that matches decides.
RULE_URL = "canonical_url"
RULE_EXTERNAL_ID = "external_id"
RULE_COMPOSITE = "title_author"
IDENTITY_RULES = (RULE_URL, RULE_EXTERNAL_ID, RULE_COMPOSITE)


def normalize_text(text: str | None) -> str:
    """Normalize text for stable comparison.

    - Unicode NFC normalization
    - Lowercase
    - Collapse all whitespace (spaces, tabs, newlines) to single spaces
    - Strip leading/trailing whitespace
    """
    text = unicodedata.normalize("NFC", text or "")
    text = text.lower()
    text = re.sub(r"\s+", " ", text)
    return text.strip()


@dataclass(frozen=True)
class StoredIdentity:
    """The identity-bearing fields of a stored ContentItem."""

    id: str
    canonical_url: str
    external_id: str | None
    source_kind: str
    title: str
    author: str


@dataclass(frozen=True)
class IdentityResolution:
    status: str  # "new" or "match"
    existing_id: str | None = None
    rule: str | None = None
    ambiguity: IdentityAmbiguity | None = None


def _matches(rule: str, item: NormalizedItem, source_kind: str, stored: StoredIdentity) -> bool:
    if rule == RULE_URL:
        return item.canonical_url == stored.canonical_url
    if stored.source_kind != source_kind:
        return False
    if rule == RULE_EXTERNAL_ID:
        return bool(item.external_id) and item.external_id == stored.external_id
    title = normalize_text(item.title)
    return bool(title) and (
        title == normalize_text(stored.title)
        and normalize_text(item.author) == normalize_text(stored.author)
    )


def resolve_identity(
    item: NormalizedItem,
    source_kind: str,
    candidates: Iterable[StoredIdentity],
) -> IdentityResolution:
    """Decide whether an item matches an already-stored record.

    Rules are tried in order: canonical URL, then external id within the
    source kind, then normalized (title, author) within the source kind.
    Within a rule, the candidate with the smallest id wins so the result does
    not depend on candidate order. Pure: no I/O and no side effects.
    """
    ordered = sorted(candidates, key=lambda c: c.id)
    hits: dict[str, str] = {}
    for rule in IDENTITY_RULES:
        for stored in ordered:
            if _matches(rule, item, source_kind, stored):
                hits[rule] = stored.id
                break

    if not hits:
        return IdentityResolution(status="new")

    rule = next(r for r in IDENTITY_RULES if r in hits)
    chosen = hits[rule]
    conflicts = {r: i for r, i in hits.items() if i != chosen}
    ambiguity = IdentityAmbiguity(chosen, rule, conflicts) if conflicts else None
    return IdentityResolution(
        status="match", existing_id=chosen, rule=rule, ambiguity=ambiguity
    )


def compute_fingerprint(item: NormalizedItem) -> str:
    """Compute a SHA-256 fingerprint over an item's mutable fields.

    Identity fields (canonical URL, external id) are excluded; they never
    change after first sighting. Two items with equal fingerprints carry the
    same stored content.
    """
    payload = {
        "title": item.title,
        "summary": item.summary,
        "body": item.body,
        "author": item.author,
        "published_at": item.published_at,
        "media": item.media,
        "metrics": metrics_as_dict(item.metrics),
        "tags": list(item.tags),
    }
    combined = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()
