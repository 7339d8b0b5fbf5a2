"""Execute bookmark searches against Typesense, with a store-backed fallback."""
import logging
import time
from typing import List, Optional

from mindmark_search.config import SearchConfig
from mindmark_search.errors import SearchEngineError, SearchUnavailableError
from mindmark_search.indexing import IndexSyncService
from mindmark_search.models import SearchOptions, SearchResponse
from mindmark_search.normalize import extract_suggestions, normalize_records, normalize_response
from mindmark_search.query import build_query, build_suggestion_query
from mindmark_search.schema import DEFAULT_COLLECTION
from mindmark_search.store import BookmarkStore
from mindmark_search.typesense_client import TypesenseClient

logger = logging.getLogger(__name__)


class BookmarkSearcher:
    """Run searches and suggestion lookups for one collection.

    When a fallback store is configured, queries go to it while the owner's
    index is being rebuilt or when the engine is unreachable. Both paths
    return the same SearchResponse shape.
    """

    def __init__(
        self,
        client: TypesenseClient,
        collection: str = DEFAULT_COLLECTION,
        sync_service: Optional[IndexSyncService] = None,
        fallback_store: Optional[BookmarkStore] = None,
        config: Optional[SearchConfig] = None,
    ):
        self.client = client
        self.collection = collection
        self.sync_service = sync_service
        self.fallback_store = fallback_store
        self.config = config or SearchConfig()

    async def search(self, options: SearchOptions) -> SearchResponse:
        """Search bookmarks.

        Args:
            options: Search options (owner_id is mandatory)

        Returns:
            Normalised SearchResponse

        Raises:
            QueryValidationError: If options are malformed (no request is made)
            SearchUnavailableError: If the engine is down and no fallback is configured
            SearchAuthenticationError: If the engine rejects our credentials
        """
        params = build_query(options, max_facet_values=self.config.max_facet_values)

        if self._owner_reindexing(options.owner_id) and self.fallback_store is not None:
            logger.info("Index for owner %s is rebuilding; using store search", options.owner_id)
            return await self._search_store(options, params["page"])

        started = time.monotonic()
        try:
            raw = await self.client.search(self.collection, params)
        except SearchUnavailableError as e:
            if self.fallback_store is None:
                raise
            logger.warning("Search engine unavailable (%s); using store search", e)
            return await self._search_store(options, params["page"])

        elapsed_ms = int((time.monotonic() - started) * 1000)
        return normalize_response(raw, query=options.query, page=params["page"], elapsed_ms=elapsed_ms)

    async def get_suggestions(self, owner_id: str, partial: str) -> List[str]:
        """Autocomplete suggestions from titles and tags.

        Returns an empty list for input shorter than the minimum length or
        when the engine fails.
        """
        if not partial or len(partial.strip()) < self.config.suggestion_min_chars:
            return []

        params = build_suggestion_query(
            owner_id,
            partial,
            max_hits=self.config.max_suggestions,
            max_facet_values=self.config.max_facet_values,
        )
        try:
            raw = await self.client.search(self.collection, params)
        except SearchEngineError as e:
            logger.warning("Failed to get search suggestions: %s", e)
            return []

        return extract_suggestions(raw, partial, limit=self.config.max_suggestions)

    def _owner_reindexing(self, owner_id: str) -> bool:
        return self.sync_service is not None and self.sync_service.is_reindexing(owner_id)

    async def _search_store(self, options: SearchOptions, page: int) -> SearchResponse:
        started = time.monotonic()
        rows, total = await self.fallback_store.search_bookmarks(
            options.owner_id,
            options.query,
            limit=options.limit,
            offset=options.offset,
            filters=options.filters,
            sort_by=options.sort_by,
            sort_order=options.sort_order,
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return normalize_records(rows, total, query=options.query, page=page, elapsed_ms=elapsed_ms)
