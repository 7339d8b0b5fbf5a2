"""Typesense collection schema and fixed query field lists for bookmarks."""
from typing import Any, Dict, List


DEFAULT_COLLECTION = "bookmarks"

# Must match transform.to_search_document output exactly.
BOOKMARK_FIELDS: List[Dict[str, Any]] = [
    {"name": "id", "type": "string"},
    {"name": "title", "type": "string"},
    {"name": "description", "type": "string", "optional": True},
    {"name": "url", "type": "string"},
    {"name": "content_type", "type": "string", "facet": True},
    {"name": "ai_summary", "type": "string", "optional": True},
    {"name": "ai_tags", "type": "string[]", "facet": True, "optional": True},
    {"name": "user_id", "type": "string"},
    {"name": "collection_id", "type": "string", "facet": True, "optional": True},
    {"name": "collection_name", "type": "string", "facet": True, "optional": True},
    {"name": "is_favorite", "type": "bool", "facet": True},
    {"name": "is_archived", "type": "bool", "facet": True},
    {"name": "created_at", "type": "int64"},
    {"name": "updated_at", "type": "int64"},
]

DOCUMENT_FIELD_NAMES = tuple(f["name"] for f in BOOKMARK_FIELDS)

QUERY_BY = "title,description,url,ai_summary,ai_tags"
FACET_BY = "content_type,collection_name,ai_tags"
HIGHLIGHT_FIELDS = ("title", "description", "ai_summary")
SUGGESTION_QUERY_BY = "title,ai_tags"

OWNER_FIELD = "user_id"
TEXT_MATCH_FIELD = "_text_match"


def bookmark_schema(name: str = DEFAULT_COLLECTION) -> Dict[str, Any]:
    """Build the collection schema for the given collection name."""
    return {
        "name": name,
        "fields": [dict(f) for f in BOOKMARK_FIELDS],
        "default_sorting_field": "created_at",
    }
