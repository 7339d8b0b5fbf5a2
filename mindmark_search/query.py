"""Build Typesense search parameters from structured search options.

The owner clause is always the first filter and cannot be left out: an
options object without an owner fails validation before any request is
made.
"""
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from mindmark_search.errors import QueryValidationError
from mindmark_search.models import CONTENT_TYPES, SORT_FIELDS, SORT_ORDERS, SearchOptions
from mindmark_search.schema import (
    FACET_BY,
    HIGHLIGHT_FIELDS,
    OWNER_FIELD,
    QUERY_BY,
    SUGGESTION_QUERY_BY,
    TEXT_MATCH_FIELD,
)


MATCH_ALL = "*"
MAX_PER_PAGE = 250  # Typesense hard limit

SORT_FIELD_MAP = {
    "relevance": TEXT_MATCH_FIELD,
    "created": "created_at",
    "updated": "updated_at",
}

_BARE_VALUE = re.compile(r"^[A-Za-z0-9_\-]+$")


def filter_value(value: str) -> str:
    """Render a value for a filter_by clause, backtick-quoting when needed.

    Raises:
        QueryValidationError: If the value is empty or contains a backtick
    """
    value = str(value)
    if not value:
        raise QueryValidationError("Filter values must not be empty")
    if "`" in value:
        raise QueryValidationError(f"Filter value contains a backtick: {value!r}")
    if _BARE_VALUE.match(value):
        return value
    return f"`{value}`"


def owner_clause(owner_id: str) -> str:
    if not owner_id or not str(owner_id).strip():
        raise QueryValidationError("owner_id is required for every query")
    return f"{OWNER_FIELD}:={filter_value(owner_id)}"


def _in_clause(field_name: str, values: List[str]) -> str:
    return f"{field_name}:[{','.join(filter_value(v) for v in values)}]"


def _bool_clause(field_name: str, value: bool) -> str:
    return f"{field_name}:={'true' if value else 'false'}"


def _to_epoch(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def validate_options(options: SearchOptions) -> None:
    """Reject malformed options before any network call.

    Raises:
        QueryValidationError: Describing the first problem found
    """
    owner_clause(options.owner_id)

    if not isinstance(options.limit, int) or not 1 <= options.limit <= MAX_PER_PAGE:
        raise QueryValidationError(f"limit must be between 1 and {MAX_PER_PAGE}, got {options.limit!r}")
    if not isinstance(options.offset, int) or options.offset < 0:
        raise QueryValidationError(f"offset must be a non-negative integer, got {options.offset!r}")
    if options.sort_by not in SORT_FIELDS:
        raise QueryValidationError(
            f"sort_by must be one of {', '.join(SORT_FIELDS)}, got {options.sort_by!r}"
        )
    if options.sort_order not in SORT_ORDERS:
        raise QueryValidationError(f"sort_order must be asc or desc, got {options.sort_order!r}")

    unknown = [t for t in options.filters.content_types if t not in CONTENT_TYPES]
    if unknown:
        raise QueryValidationError(f"Unknown content types: {', '.join(map(str, unknown))}")

    date_range = options.filters.date_range
    if date_range and date_range.start and date_range.end:
        if _to_epoch(date_range.start) > _to_epoch(date_range.end):
            raise QueryValidationError("date_range start is after end")


def build_filter(options: SearchOptions, now: Optional[Callable[[], float]] = None) -> str:
    """Build the AND-joined filter_by expression, owner clause first."""
    filters = options.filters
    clauses = [owner_clause(options.owner_id)]

    if filters.content_types:
        clauses.append(_in_clause("content_type", filters.content_types))
    if filters.collection_ids:
        clauses.append(_in_clause("collection_id", filters.collection_ids))
    if filters.is_favorite is not None:
        clauses.append(_bool_clause("is_favorite", filters.is_favorite))
    if filters.is_archived is not None:
        clauses.append(_bool_clause("is_archived", filters.is_archived))

    date_range = filters.date_range
    if date_range and (date_range.start or date_range.end):
        start = _to_epoch(date_range.start) if date_range.start else 0
        end = _to_epoch(date_range.end) if date_range.end else int((now or time.time)())
        clauses.append(f"created_at:[{start}..{end}]")

    return " && ".join(clauses)


def build_query(
    options: SearchOptions,
    now: Optional[Callable[[], float]] = None,
    max_facet_values: int = 10,
) -> Dict[str, Any]:
    """Map search options onto Typesense search parameters.

    Args:
        options: Search options; owner_id is mandatory
        now: Clock used for an open-ended date range (defaults to time.time)
        max_facet_values: Cap on values returned per facet

    Returns:
        Dict of Typesense search parameters

    Raises:
        QueryValidationError: If options are malformed
    """
    validate_options(options)

    query_text = options.query.strip() if options.query else ""
    sort_field = SORT_FIELD_MAP[options.sort_by]

    return {
        "q": query_text or MATCH_ALL,
        "query_by": QUERY_BY,
        "filter_by": build_filter(options, now=now),
        "sort_by": f"{sort_field}:{options.sort_order}",
        "facet_by": FACET_BY,
        "max_facet_values": max_facet_values,
        "per_page": options.limit,
        # Public contract is a 0-based offset; Typesense pages are 1-based.
        "page": options.offset // options.limit + 1,
        "highlight_full_fields": ",".join(HIGHLIGHT_FIELDS),
        "highlight_affix_num_tokens": 3,
        "typo_tokens_threshold": 1,
        "drop_tokens_threshold": 1,
    }


def build_suggestion_query(owner_id: str, partial: str, max_hits: int = 5, max_facet_values: int = 10) -> Dict[str, Any]:
    """Parameters for a short title/tag lookup used by autocomplete."""
    return {
        "q": partial.strip(),
        "query_by": SUGGESTION_QUERY_BY,
        "filter_by": owner_clause(owner_id),
        "per_page": max_hits,
        "facet_by": "ai_tags",
        "max_facet_values": max_facet_values,
        "prefix": True,
    }
