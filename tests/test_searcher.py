"""Tests for searcher module."""
from datetime import datetime

import pytest

from mindmark_search.errors import QueryValidationError, SearchAuthenticationError, SearchUnavailableError
from mindmark_search.indexing import IndexSyncService
from mindmark_search.models import DateRange, SearchFilters, SearchOptions
from mindmark_search.searcher import BookmarkSearcher


@pytest.fixture
def sync_service(fake_client):
    return IndexSyncService(fake_client, "bookmarks")


@pytest.fixture
def searcher(fake_client, sync_service, store):
    return BookmarkSearcher(fake_client, "bookmarks", sync_service=sync_service, fallback_store=store)


@pytest.mark.asyncio
class TestSearch:
    async def test_engine_results(self, searcher, sync_service, bookmark_factory):
        await sync_service.index_bulk([
            bookmark_factory("b1", title="React hooks"),
            bookmark_factory("b2", title="Vue basics"),
            bookmark_factory("b3", user_id="u2", title="React for u2"),
        ])

        response = await searcher.search(SearchOptions(query="react", owner_id="u1"))
        assert response.source == "engine"
        assert [r.id for r in response.results] == ["b1"]
        assert response.total_results == 1

    async def test_sends_owner_scoped_params(self, searcher, fake_client):
        await searcher.search(SearchOptions(query="", owner_id="u1", filters=SearchFilters(is_favorite=True)))
        params = fake_client.search_calls[-1]
        assert params["filter_by"] == "user_id:=u1 && is_favorite:=true"
        assert params["q"] == "*"

    async def test_invalid_options_make_no_request(self, searcher, fake_client):
        with pytest.raises(QueryValidationError):
            await searcher.search(SearchOptions(query="x", owner_id=""))
        assert fake_client.search_calls == []

    async def test_falls_back_to_store_when_unavailable(self, searcher, fake_client, store):
        await store.create_bookmark("u1", "https://react.dev", "React docs")
        fake_client.failures["search"] = SearchUnavailableError("down")

        response = await searcher.search(SearchOptions(query="react", owner_id="u1"))
        assert response.source == "fallback"
        assert [r.title for r in response.results] == ["React docs"]
        assert response.results[0].score == 1.0

    async def test_fallback_honours_date_range_and_sort(self, searcher, fake_client, store):
        older = await store.create_bookmark("u1", "https://react.dev", "React docs")
        newer = await store.create_bookmark("u1", "https://react.dev/learn", "React tutorial")
        fake_client.failures["search"] = SearchUnavailableError("down")

        ascending = await searcher.search(SearchOptions(query="react", owner_id="u1", sort_by="created", sort_order="asc"))
        assert [r.id for r in ascending.results] == [older.id, newer.id]

        window = SearchFilters(date_range=DateRange(datetime(2000, 1, 1), datetime(2000, 1, 2)))
        response = await searcher.search(SearchOptions(query="react", owner_id="u1", filters=window))
        assert response.source == "fallback"
        assert response.total_results == 0

    async def test_unavailable_without_fallback_raises(self, fake_client):
        fake_client.failures["search"] = SearchUnavailableError("down")
        searcher = BookmarkSearcher(fake_client, "bookmarks")
        with pytest.raises(SearchUnavailableError):
            await searcher.search(SearchOptions(query="react", owner_id="u1"))

    async def test_auth_error_is_not_masked(self, searcher, fake_client):
        fake_client.failures["search"] = SearchAuthenticationError("bad key", status_code=401)
        with pytest.raises(SearchAuthenticationError):
            await searcher.search(SearchOptions(query="react", owner_id="u1"))

    async def test_uses_store_while_reindexing(self, searcher, sync_service, fake_client, store):
        await store.create_bookmark("u1", "https://react.dev", "React docs")
        sync_service._reindexing.add("u1")

        response = await searcher.search(SearchOptions(query="react", owner_id="u1"))
        assert response.source == "fallback"
        assert fake_client.search_calls == []


@pytest.mark.asyncio
class TestSuggestions:
    async def test_short_input_returns_nothing(self, searcher, fake_client):
        assert await searcher.get_suggestions("u1", "r") == []
        assert fake_client.search_calls == []

    async def test_titles_and_tags(self, searcher, fake_client):
        fake_client.search_response = {
            "hits": [{"document": {"title": "React hooks"}}],
            "facet_counts": [{"field_name": "ai_tags", "counts": [{"value": "react", "count": 2}]}],
        }
        assert await searcher.get_suggestions("u1", "rea") == ["React hooks", "react"]
        assert fake_client.search_calls[-1]["filter_by"] == "user_id:=u1"

    async def test_engine_failure_returns_empty(self, searcher, fake_client):
        fake_client.failures["search"] = SearchUnavailableError("down")
        assert await searcher.get_suggestions("u1", "rea") == []
