"""Per-session search state: debounce, cancellation and a small result cache.

A SearchSession moves through idle -> debouncing -> loading -> success/error.
Only one request is outstanding per session: new input cancels both the
armed timer and any in-flight request, and a response that arrives for a
superseded query is dropped rather than shown.

Sessions are driven from the event loop (set_query and friends must be
called from a running loop, the way a UI event handler would be).
"""
import asyncio
import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Callable, Hashable, List, Optional

from mindmark_search.errors import QueryValidationError, SearchAuthenticationError, SearchEngineError
from mindmark_search.models import SearchFilters, SearchOptions, SearchResponse, SearchState
from mindmark_search.searcher import BookmarkSearcher

logger = logging.getLogger(__name__)

MAX_HISTORY = 10


class QueryCache:
    """Bounded FIFO cache of search responses.

    Eviction is by insertion order, not by use: the oldest stored entry goes
    first once max_entries is exceeded.
    """

    def __init__(self, max_entries: int = 50):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[Hashable, SearchResponse]" = OrderedDict()

    def get(self, key: Hashable) -> Optional[SearchResponse]:
        return self._entries.get(key)

    def put(self, key: Hashable, response: SearchResponse) -> None:
        self._entries[key] = response
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class SearchSession:
    """Search-as-you-type session for one owner."""

    def __init__(
        self,
        searcher: BookmarkSearcher,
        owner_id: str,
        debounce_ms: int = 300,
        cache_size: int = 50,
        limit: int = 20,
        on_change: Optional[Callable[[SearchState], None]] = None,
        cache: Optional[QueryCache] = None,
    ):
        self.searcher = searcher
        self.owner_id = owner_id
        self.debounce_ms = debounce_ms
        self.limit = limit
        self.on_change = on_change
        self.cache = cache if cache is not None else QueryCache(cache_size)

        self.filters = SearchFilters()
        self.sort_by = "relevance"
        self.sort_order = "desc"

        self._query = ""
        self._state = SearchState.idle()
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._history: List[str] = []

    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def query(self) -> str:
        return self._query

    @property
    def history(self) -> List[str]:
        """Recent settled queries, most recent first, without duplicates."""
        return list(self._history)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def set_query(self, text: str) -> None:
        """Record new input. Blank input clears results immediately."""
        self._query = text or ""
        self._restart()

    def set_filters(self, filters: SearchFilters) -> None:
        self.filters = filters
        if self._query.strip():
            self._restart()

    def set_sort(self, sort_by: str, sort_order: str = "desc") -> None:
        self.sort_by = sort_by
        self.sort_order = sort_order
        if self._query.strip():
            self._restart()

    async def search(self, options: SearchOptions) -> SearchResponse:
        """Run one search now, through the cache and without the debounce.

        Errors propagate to the caller. Fallback responses are not cached,
        so the engine answers again once it is back.
        """
        key = options.cache_key()
        response = self.cache.get(key)
        if response is None:
            response = await self.searcher.search(options)
            if response.source == "engine":
                self.cache.put(key, response)
        self._remember(options.query)
        return response

    async def settle(self) -> SearchState:
        """Wait until no timer or request is pending, then return the state."""
        while self._task is not None and not self._task.done():
            await asyncio.wait([self._task])
        return self._state

    def close(self) -> None:
        """Cancel pending work. Called when the consumer goes away."""
        self._cancel_pending()
        self._generation += 1
        self._closed = True

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _options(self, text: str) -> SearchOptions:
        return SearchOptions(
            query=text,
            owner_id=self.owner_id,
            filters=replace(self.filters),
            sort_by=self.sort_by,
            sort_order=self.sort_order,
            limit=self.limit,
            offset=0,
        )

    def _cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _restart(self) -> None:
        if self._closed:
            raise RuntimeError("Search session is closed")

        self._cancel_pending()
        self._generation += 1

        text = self._query.strip()
        if not text:
            self._set_state(SearchState.idle())
            return

        self._set_state(SearchState.debouncing(text))
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._generation, self._options(text)))

    def _set_state(self, state: SearchState) -> None:
        self._state = state
        if self.on_change is not None:
            self.on_change(state)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    async def _run(self, generation: int, options: SearchOptions) -> None:
        await asyncio.sleep(self.debounce_ms / 1000)

        key = options.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            if self._is_current(generation):
                self._remember(options.query)
                self._set_state(SearchState.success(options.query, cached))
            return

        if not self._is_current(generation):
            return
        self._set_state(SearchState.loading(options.query))

        try:
            response = await self.searcher.search(options)
        except QueryValidationError as e:
            self._fail(generation, options.query, str(e), "invalid")
            return
        except SearchAuthenticationError as e:
            self._fail(generation, options.query, str(e), "unauthenticated")
            return
        except SearchEngineError as e:
            self._fail(generation, options.query, str(e), "unavailable")
            return
        except Exception as e:
            logger.exception("Unexpected search failure for %r", options.query)
            self._fail(generation, options.query, str(e), "unavailable")
            return

        if not self._is_current(generation):
            logger.debug("Discarding stale response for %r", options.query)
            return

        if response.source == "engine":
            self.cache.put(key, response)
        self._remember(options.query)
        self._set_state(SearchState.success(options.query, response))

    def _remember(self, query: str) -> None:
        text = query.strip()
        if not text:
            return
        self._history = [text] + [q for q in self._history if q != text]
        del self._history[MAX_HISTORY:]

    def _fail(self, generation: int, query: str, message: str, kind: str) -> None:
        if not self._is_current(generation):
            return
        logger.warning("Search for %r failed (%s): %s", query, kind, message)
        self._set_state(SearchState.failed(query, message, kind))
