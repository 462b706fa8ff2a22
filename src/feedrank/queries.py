"""Read-only query functions for the presentation layer."""

from __future__ import annotations

import base64
import binascii
import json
import math

from feedrank.storage.connection import get_readonly_connection

# ---------------------------------------------------------------------------
# Allowed sort columns and ordering for list_items
# ---------------------------------------------------------------------------
_SORT_COLUMNS = {
    "published_at": "COALESCE(published_at, '')",
    "final_score": "final_score",
    "local_score": "local_score",
}

_ALLOWED_ORDER = {"asc", "desc"}

_FILTER_COLUMNS = ("kind", "category", "source_id")

_LIST_COLUMNS = (
    "id, kind, source_id, source_kind, external_id, title, summary, canonical_url, "
    "author, category, tags, media, metrics, like_count, view_count, bookmark_count, "
    "vote_count, user_rating, external_score, local_score, final_score, "
    "published_at, created_at, updated_at, active"
)

_SHORT_DESCRIPTION_LIMIT = 150
_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


# ---------------------------------------------------------------------------
# Computed read-time fields
# ---------------------------------------------------------------------------
def format_size(num_bytes: int) -> str:
    """Human-readable byte size in powers of 1024, e.g. ``1.5 GB``."""
    if num_bytes <= 0:
        return "0 B"
    exponent = 0
    while num_bytes >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = f"{num_bytes / 1024 ** exponent:.1f}".rstrip("0").rstrip(".")
    return f"{value} {_SIZE_UNITS[exponent]}"


def short_description(text: str) -> str:
    if len(text) <= _SHORT_DESCRIPTION_LIMIT:
        return text
    return text[:_SHORT_DESCRIPTION_LIMIT] + "..."


def computed_fields(kind: str, metrics: dict, summary: str) -> dict:
    """Derived fields evaluated on read; nothing here is stored."""
    if kind == "model":
        return {"formatted_size": format_size(int(metrics.get("model_size") or 0))}
    if kind == "repo":
        return {"short_description": short_description(summary)}
    if kind == "post":
        return {
            "total_engagement": int(metrics.get("likes") or 0)
            + int(metrics.get("reposts") or 0)
            + int(metrics.get("replies") or 0)
        }
    return {}


def _row_to_item(row) -> dict:
    metrics = json.loads(row["metrics"])
    item = {
        "id": row["id"],
        "kind": row["kind"],
        "source_id": row["source_id"],
        "source_kind": row["source_kind"],
        "external_id": row["external_id"],
        "title": row["title"],
        "summary": row["summary"],
        "canonical_url": row["canonical_url"],
        "author": row["author"],
        "category": row["category"],
        "tags": json.loads(row["tags"]),
        "media": json.loads(row["media"]),
        "metrics": metrics,
        "likes": row["like_count"],
        "views": row["view_count"],
        "bookmarks": row["bookmark_count"],
        "votes": row["vote_count"],
        "rating": row["user_rating"],
        "external_score": row["external_score"],
        "local_score": row["local_score"],
        "final_score": row["final_score"],
        "published_at": row["published_at"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "active": bool(row["active"]),
    }
    item.update(computed_fields(row["kind"], metrics, row["summary"]))
    return item


# ---------------------------------------------------------------------------
# Filtering and cursors
# ---------------------------------------------------------------------------
def _where(filters: dict | None) -> tuple[list[str], list[object]]:
    filters = filters or {}
    conditions: list[str] = []
    params: list[object] = []

    for column in _FILTER_COLUMNS:
        if filters.get(column):
            conditions.append(f"{column} = ?")
            params.append(filters[column])

    # Inactive items are hidden unless asked for explicitly
    active = filters.get("active", True)
    if active is not None:
        conditions.append("active = ?")
        params.append(int(bool(active)))

    return conditions, params


def _sort_and_order(sort: str, order: str) -> tuple[str, str]:
    if sort not in _SORT_COLUMNS:
        sort = "published_at"
    if order not in _ALLOWED_ORDER:
        order = "desc"
    return sort, order


def encode_cursor(sort: str, order: str, value: object, item_id: str) -> str:
    payload = json.dumps({"s": sort, "o": order, "v": value, "id": item_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str, sort: str, order: str) -> tuple[object, str]:
    """Return (sort value, item id) from a cursor. Raises ValueError if invalid."""
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise ValueError("Malformed cursor") from exc
    if not isinstance(data, dict) or not {"s", "o", "v", "id"} <= data.keys():
        raise ValueError("Malformed cursor")
    if data["s"] != sort or data["o"] != order:
        raise ValueError("Cursor was issued for a different sort order")
    return data["v"], data["id"]


# ---------------------------------------------------------------------------
# list_items (offset pagination)
# ---------------------------------------------------------------------------
def list_items(
    database_path: str,
    *,
    filters: dict | None = None,
    page: int = 1,
    per_page: int = 20,
    sort: str = "published_at",
    order: str = "desc",
) -> tuple[list[dict], int]:
    """Return a paginated, filtered, sorted list of items and the total count."""
    page = max(page, 1)
    per_page = max(per_page, 1)
    offset = (page - 1) * per_page
    sort, order = _sort_and_order(sort, order)
    sort_expr = _SORT_COLUMNS[sort]

    conditions, params = _where(filters)
    where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

    with get_readonly_connection(database_path) as conn:
        total = conn.execute(
            f"SELECT COUNT(*) FROM content_items {where_clause}", params  # noqa: S608
        ).fetchone()[0]

        # sort and order are whitelisted above so safe to interpolate
        rows = conn.execute(
            f"SELECT {_LIST_COLUMNS} FROM content_items {where_clause} "  # noqa: S608
            f"ORDER BY {sort_expr} {order}, id {order} "
            f"LIMIT ? OFFSET ?",
            [*params, per_page, offset],
        ).fetchall()

    return [_row_to_item(r) for r in rows], total


def page_count(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / max(per_page, 1)))


# ---------------------------------------------------------------------------
# list_items_after (keyset pagination)
# ---------------------------------------------------------------------------
def list_items_after(
    database_path: str,
    *,
    filters: dict | None = None,
    cursor: str | None = None,
    limit: int = 20,
    sort: str = "published_at",
    order: str = "desc",
) -> tuple[list[dict], str | None]:
    """Return up to ``limit`` items after ``cursor`` and the next cursor.

    The next cursor is None on the last page. Keyset pagination stays stable
    while new items are inserted ahead of the reader.
    """
    limit = max(limit, 1)
    sort, order = _sort_and_order(sort, order)
    sort_expr = _SORT_COLUMNS[sort]
    conditions, params = _where(filters)

    if cursor:
        value, last_id = decode_cursor(cursor, sort, order)
        op = "<" if order == "desc" else ">"
        conditions.append(f"({sort_expr} {op} ? OR ({sort_expr} = ? AND id {op} ?))")
        params.extend([value, value, last_id])

    where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""

    with get_readonly_connection(database_path) as conn:
        rows = conn.execute(
            f"SELECT {_LIST_COLUMNS}, {sort_expr} AS sort_value "  # noqa: S608
            f"FROM content_items {where_clause} "
            f"ORDER BY {sort_expr} {order}, id {order} LIMIT ?",
            [*params, limit + 1],
        ).fetchall()

    has_more = len(rows) > limit
    rows = rows[:limit]
    next_cursor = None
    if has_more and rows:
        last = rows[-1]
        next_cursor = encode_cursor(sort, order, last["sort_value"], last["id"])
    return [_row_to_item(r) for r in rows], next_cursor


# ---------------------------------------------------------------------------
# get_item
# ---------------------------------------------------------------------------
def get_item(database_path: str, item_id: str) -> dict | None:
    """Return a single item with its body and computed fields, or None."""
    with get_readonly_connection(database_path) as conn:
        row = conn.execute(
            f"SELECT {_LIST_COLUMNS}, body, last_synced_at "  # noqa: S608
            "FROM content_items WHERE id = ?",
            (item_id,),
        ).fetchone()

    if row is None:
        return None

    item = _row_to_item(row)
    item["body"] = row["body"]
    item["last_synced_at"] = row["last_synced_at"]
    return item
