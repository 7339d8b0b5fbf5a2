"""Transform canonical bookmark records into Typesense documents.

The document is regenerated in full on every sync, so this module is the
only place that decides the indexed shape. It performs no I/O and has no
failure path: every field gets an explicit default.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Union

from mindmark_search.models import Bookmark


BookmarkLike = Union[Bookmark, Mapping[str, Any]]


def to_epoch_seconds(value: Any) -> int:
    """Convert an ISO-8601 string, datetime or number to integer epoch seconds.

    Naive values are taken as UTC. Anything unparsable becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return 0
    else:
        return 0

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _tags(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(tag) for tag in value if tag is not None]


def to_search_document(bookmark: BookmarkLike) -> Dict[str, Any]:
    """Project a bookmark onto the search document schema.

    Args:
        bookmark: Bookmark dataclass or record mapping from the primary store

    Returns:
        Flat dict with exactly the fields of schema.BOOKMARK_FIELDS
    """
    record = bookmark.to_record() if isinstance(bookmark, Bookmark) else bookmark

    created_at = to_epoch_seconds(record.get("created_at"))
    updated_raw = record.get("updated_at")
    updated_at = to_epoch_seconds(updated_raw) if updated_raw else created_at

    return {
        "id": _text(record.get("id")),
        "title": _text(record.get("title")) or "Untitled",
        "description": _text(record.get("description")),
        "url": _text(record.get("url")),
        "content_type": _text(record.get("content_type")) or "webpage",
        "ai_summary": _text(record.get("ai_summary")),
        "ai_tags": _tags(record.get("ai_tags")),
        "user_id": _text(record.get("user_id")),
        "collection_id": _text(record.get("collection_id")),
        "collection_name": _text(record.get("collection_name")),
        "is_favorite": bool(record.get("is_favorite") or False),
        "is_archived": bool(record.get("is_archived") or False),
        "created_at": created_at,
        "updated_at": updated_at,
    }
