"""Map engine responses and store rows onto the stable SearchResponse shape."""
from typing import Any, Dict, List, Mapping, Optional

from mindmark_search.models import FacetCount, SearchFacets, SearchHighlight, SearchResponse, SearchResult
from mindmark_search.schema import HIGHLIGHT_FIELDS
from mindmark_search.transform import to_search_document

# Engine facet field -> SearchFacets attribute
FACET_FIELDS = {
    "content_type": "content_type",
    "collection_name": "collections",
    "ai_tags": "ai_tags",
}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return 0
    try:
        return int(value)
    except (ValueError, OverflowError):
        return 0


def _result_from_document(
    document: Mapping[str, Any],
    highlights: Optional[SearchHighlight] = None,
    score: Optional[float] = None,
) -> SearchResult:
    # The document may come from an older schema; run it through the
    # transformer so every field is present and typed.
    doc = to_search_document(document)
    return SearchResult(
        id=doc["id"],
        title=doc["title"],
        description=doc["description"],
        url=doc["url"],
        content_type=doc["content_type"],
        ai_summary=doc["ai_summary"],
        ai_tags=doc["ai_tags"],
        collection_id=doc["collection_id"],
        collection_name=doc["collection_name"],
        is_favorite=doc["is_favorite"],
        is_archived=doc["is_archived"],
        created_at=doc["created_at"],
        updated_at=doc["updated_at"],
        highlights=highlights,
        score=score,
    )


def _snippets(entry: Mapping[str, Any]) -> List[str]:
    if entry.get("snippets"):
        return [str(s) for s in entry["snippets"]]
    if entry.get("snippet"):
        return [str(entry["snippet"])]
    return []


def extract_highlights(hit: Mapping[str, Any]) -> Optional[SearchHighlight]:
    """Collect highlight snippets for title, description and ai_summary.

    Handles both the legacy `highlights` list and the newer `highlight`
    object. Returns None when the engine sent no snippets.
    """
    found: Dict[str, List[str]] = {}

    for entry in _as_list(hit.get("highlights")):
        if not isinstance(entry, dict):
            continue
        field_name = entry.get("field")
        if field_name in HIGHLIGHT_FIELDS:
            snippets = _snippets(entry)
            if snippets:
                found.setdefault(field_name, []).extend(snippets)

    highlight = hit.get("highlight")
    if isinstance(highlight, dict):
        for field_name in HIGHLIGHT_FIELDS:
            if field_name in found:
                continue
            entry = highlight.get(field_name)
            if isinstance(entry, dict):
                snippets = _snippets(entry)
                if snippets:
                    found[field_name] = snippets

    if not found:
        return None
    return SearchHighlight(**found)


def _score(hit: Mapping[str, Any]) -> Optional[float]:
    value = hit.get("text_match")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_facets(facet_counts: Any) -> SearchFacets:
    facets = SearchFacets()
    for facet in _as_list(facet_counts):
        if not isinstance(facet, dict):
            continue
        attr = FACET_FIELDS.get(facet.get("field_name"))
        if attr is None:
            continue
        counts = [
            FacetCount(value=str(c.get("value", "")), count=_as_int(c.get("count")))
            for c in _as_list(facet.get("counts"))
            if isinstance(c, dict)
        ]
        setattr(facets, attr, counts)
    return facets


def normalize_response(
    raw: Optional[Mapping[str, Any]],
    query: str = "",
    page: int = 1,
    elapsed_ms: Optional[int] = None,
) -> SearchResponse:
    """Convert a Typesense search response into a SearchResponse.

    Args:
        raw: Decoded engine response; missing fields are tolerated
        query: The query text that produced it
        page: 1-based page number requested
        elapsed_ms: Measured round-trip time, used when the engine omits search_time_ms

    Returns:
        SearchResponse with source="engine"
    """
    raw = raw or {}

    results = []
    for hit in _as_list(raw.get("hits")):
        if not isinstance(hit, dict) or not isinstance(hit.get("document"), dict):
            continue
        results.append(_result_from_document(hit["document"], extract_highlights(hit), _score(hit)))

    search_time = raw.get("search_time_ms")
    if not isinstance(search_time, (int, float)):
        search_time = elapsed_ms or 0

    return SearchResponse(
        results=results,
        total_results=_as_int(raw.get("found")),
        search_time_ms=_as_int(search_time),
        facets=normalize_facets(raw.get("facet_counts")),
        query=query,
        page=page,
        source="engine",
    )


def normalize_record(row: Mapping[str, Any]) -> SearchResult:
    """Fallback path: build a SearchResult from a primary-store row."""
    return _result_from_document(row, highlights=None, score=1.0)


def normalize_records(
    rows: List[Mapping[str, Any]],
    total: int,
    query: str = "",
    page: int = 1,
    elapsed_ms: int = 0,
) -> SearchResponse:
    """Build a fallback SearchResponse with facets counted from the rows themselves."""
    results = [normalize_record(row) for row in rows]

    content_types: Dict[str, int] = {}
    collections: Dict[str, int] = {}
    tags: Dict[str, int] = {}
    for result in results:
        content_types[result.content_type] = content_types.get(result.content_type, 0) + 1
        if result.collection_name:
            collections[result.collection_name] = collections.get(result.collection_name, 0) + 1
        for tag in result.ai_tags:
            tags[tag] = tags.get(tag, 0) + 1

    def _counts(counter: Dict[str, int]) -> List[FacetCount]:
        ordered = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
        return [FacetCount(value=value, count=count) for value, count in ordered]

    return SearchResponse(
        results=results,
        total_results=total,
        search_time_ms=elapsed_ms,
        facets=SearchFacets(
            content_type=_counts(content_types),
            collections=_counts(collections),
            ai_tags=_counts(tags),
        ),
        query=query,
        page=page,
        source="fallback",
    )


def extract_suggestions(raw: Optional[Mapping[str, Any]], partial: str, limit: int = 5) -> List[str]:
    """Pick titles and tag values that contain the partial text.

    Titles come first, then tags; duplicates are dropped and order is kept.
    """
    raw = raw or {}
    needle = partial.strip().casefold()
    if not needle:
        return []

    suggestions: List[str] = []

    def _add(value: Any) -> None:
        text = str(value)
        if needle in text.casefold() and text not in suggestions:
            suggestions.append(text)

    for hit in _as_list(raw.get("hits")):
        document = hit.get("document") if isinstance(hit, dict) else None
        if isinstance(document, dict) and document.get("title"):
            _add(document["title"])

    for facet in _as_list(raw.get("facet_counts")):
        if isinstance(facet, dict) and facet.get("field_name") == "ai_tags":
            for count in _as_list(facet.get("counts")):
                if isinstance(count, dict) and count.get("value"):
                    _add(count["value"])

    return suggestions[:limit]
