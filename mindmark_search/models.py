"""Domain types for bookmarks, search options, results and sync outcomes."""
import json
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from mindmark_search.errors import BookmarkValidationError


CONTENT_TYPES = ("webpage", "article", "video", "document", "tool", "reference")
SORT_FIELDS = ("relevance", "created", "updated")
SORT_ORDERS = ("asc", "desc")

MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 2000


@dataclass
class Bookmark:
    """Canonical bookmark record, as owned by the primary store."""
    id: str
    user_id: str
    url: str
    title: str
    description: Optional[str] = None
    content_type: str = "webpage"
    ai_summary: Optional[str] = None
    ai_tags: Optional[List[str]] = None
    collection_id: Optional[str] = None
    collection_name: Optional[str] = None
    is_favorite: bool = False
    is_archived: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Bookmark":
        """Build a Bookmark from a store row or API payload, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in record.items() if k in known})

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)


def validate_bookmark_fields(
    url: str,
    title: str,
    description: Optional[str] = None,
    content_type: str = "webpage",
) -> None:
    """Check bookmark input against the canonical record rules.

    Args:
        url: Absolute http(s) URL
        title: 1..500 characters
        description: Up to 2000 characters, optional
        content_type: One of CONTENT_TYPES

    Raises:
        BookmarkValidationError: On the first violated rule
    """
    if not url or not url.lower().startswith(("http://", "https://")):
        raise BookmarkValidationError(f"URL must be an absolute http(s) URL: {url!r}")
    if not title or not title.strip():
        raise BookmarkValidationError("Title must not be empty")
    if len(title) > MAX_TITLE_LENGTH:
        raise BookmarkValidationError(f"Title exceeds {MAX_TITLE_LENGTH} characters")
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise BookmarkValidationError(f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters")
    if content_type not in CONTENT_TYPES:
        raise BookmarkValidationError(
            f"Unknown content type {content_type!r}; expected one of {', '.join(CONTENT_TYPES)}"
        )


# ============================================================================
# Search options
# ============================================================================

@dataclass
class DateRange:
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class SearchFilters:
    """Optional filters. None on a boolean means "don't filter"."""
    content_types: List[str] = field(default_factory=list)
    collection_ids: List[str] = field(default_factory=list)
    is_favorite: Optional[bool] = None
    is_archived: Optional[bool] = None
    date_range: Optional[DateRange] = None

    def cache_key(self) -> Tuple:
        date_key = None
        if self.date_range is not None:
            date_key = (
                self.date_range.start.isoformat() if self.date_range.start else None,
                self.date_range.end.isoformat() if self.date_range.end else None,
            )
        return (
            tuple(sorted(self.content_types)),
            tuple(sorted(self.collection_ids)),
            self.is_favorite,
            self.is_archived,
            date_key,
        )


@dataclass
class SearchOptions:
    """A search request. Every query is scoped to owner_id."""
    query: str
    owner_id: str
    filters: SearchFilters = field(default_factory=SearchFilters)
    sort_by: str = "relevance"
    sort_order: str = "desc"
    limit: int = 20
    offset: int = 0

    def cache_key(self) -> Tuple:
        """Composite cache key: normalised text plus everything else that shapes results."""
        return (
            normalize_query_text(self.query),
            self.owner_id,
            self.filters.cache_key(),
            self.sort_by,
            self.sort_order,
            self.limit,
            self.offset,
        )


def normalize_query_text(query: str) -> str:
    return query.strip().casefold()


# ============================================================================
# Search results
# ============================================================================

@dataclass
class SearchHighlight:
    title: Optional[List[str]] = None
    description: Optional[List[str]] = None
    ai_summary: Optional[List[str]] = None


@dataclass
class SearchResult:
    id: str
    title: str
    description: str
    url: str
    content_type: str
    ai_summary: str
    ai_tags: List[str]
    collection_id: str
    collection_name: str
    is_favorite: bool
    is_archived: bool
    created_at: int
    updated_at: int
    highlights: Optional[SearchHighlight] = None
    score: Optional[float] = None


@dataclass
class FacetCount:
    value: str
    count: int


@dataclass
class SearchFacets:
    content_type: List[FacetCount] = field(default_factory=list)
    collections: List[FacetCount] = field(default_factory=list)
    ai_tags: List[FacetCount] = field(default_factory=list)


@dataclass
class SearchResponse:
    """Stable result shape, independent of which query path produced it."""
    results: List[SearchResult]
    total_results: int
    search_time_ms: int
    facets: SearchFacets
    query: str = ""
    page: int = 1
    source: str = "engine"  # "engine" or "fallback"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


# ============================================================================
# Sync outcomes
# ============================================================================

@dataclass
class ItemError:
    id: str
    error: str


@dataclass
class SyncResult:
    """Tagged outcome of an index sync operation. Never raised, always returned."""
    ok: bool
    action: str
    count: int = 0
    item_errors: List[ItemError] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def success(cls, action: str, count: int = 1, item_errors: Optional[List[ItemError]] = None) -> "SyncResult":
        errors = item_errors or []
        return cls(ok=not errors, action=action, count=count, item_errors=errors)

    @classmethod
    def failure(cls, action: str, error: str) -> "SyncResult":
        return cls(ok=False, action=action, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Search session state
# ============================================================================

IDLE = "idle"
DEBOUNCING = "debouncing"
LOADING = "loading"
SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class SearchState:
    """Snapshot of a search session.

    Only SUCCESS carries a response and only ERROR carries an error, so a
    consumer can never observe stale results next to a fresh error.
    """
    status: str = IDLE
    query: str = ""
    response: Optional[SearchResponse] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # "unavailable", "unauthenticated" or "invalid"

    @property
    def results(self) -> List[SearchResult]:
        return self.response.results if self.response is not None else []

    @classmethod
    def idle(cls) -> "SearchState":
        return cls()

    @classmethod
    def debouncing(cls, query: str) -> "SearchState":
        return cls(status=DEBOUNCING, query=query)

    @classmethod
    def loading(cls, query: str) -> "SearchState":
        return cls(status=LOADING, query=query)

    @classmethod
    def success(cls, query: str, response: SearchResponse) -> "SearchState":
        return cls(status=SUCCESS, query=query, response=response)

    @classmethod
    def failed(cls, query: str, error: str, error_kind: str) -> "SearchState":
        return cls(status=ERROR, query=query, error=error, error_kind=error_kind)
