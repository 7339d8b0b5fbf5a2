"""Tests for server tool registration and tool handlers."""
import json

import httpx
import pytest
import pytest_asyncio
from mcp.types import ListToolsRequest

from mindmark_search.config import Config, TypesenseConfig
from mindmark_search.errors import SearchAuthenticationError, SearchUnavailableError
from mindmark_search.indexing import IndexSyncService
from mindmark_search.searcher import BookmarkSearcher
from mindmark_search.server import ServerContext, build_context, create_server, dispatch
from mindmark_search.sync_trigger import SyncTrigger


@pytest_asyncio.fixture
async def ctx(store, fake_client):
    config = Config(typesense=TypesenseConfig(api_key="test-key"), owner_id="u1")
    sync_service = IndexSyncService(fake_client, "bookmarks")
    searcher = BookmarkSearcher(fake_client, "bookmarks", sync_service=sync_service, fallback_store=store, config=config.search)
    trigger = SyncTrigger(sync_service, store=store)
    trigger.attach(store)
    yield ServerContext(config, store, fake_client, sync_service, searcher, trigger)
    trigger.detach()
    await trigger.drain()


async def call(ctx, name, **arguments):
    content = await dispatch(ctx, name, arguments)
    return json.loads(content[0].text)


@pytest.mark.asyncio
class TestServerTools:
    async def test_server_creates(self, ctx):
        server = create_server(ctx)
        assert server.name == "mindmark-search"

    async def test_all_tools_registered(self, ctx):
        server = create_server(ctx)
        result = await server.request_handlers[ListToolsRequest](ListToolsRequest(method="tools/list"))
        tool_names = [t.name for t in result.root.tools]

        expected = [
            "health_check",
            "init_search_collection",
            "search_bookmarks",
            "get_search_suggestions",
            "recent_searches",
            "add_bookmark",
            "update_bookmark",
            "delete_bookmark",
            "sync_index",
            "reindex_bookmarks",
            "fetch_page_content",
            "store_bookmark_metadata",
            "import_chrome_bookmarks",
        ]

        assert len(tool_names) == 13
        for name in expected:
            assert name in tool_names, f"Missing tool: {name}"

    async def test_unknown_tool(self, ctx):
        with pytest.raises(ValueError):
            await dispatch(ctx, "get_bookmarks", {})


@pytest.mark.asyncio
class TestBookmarkTools:
    async def test_add_then_search(self, ctx, fake_client):
        added = await call(ctx, "add_bookmark", url="react.dev/learn", title="Learn React")
        assert added["status"] == "created"
        await ctx.trigger.drain()

        found = await call(ctx, "search_bookmarks", query="react")
        assert found["source"] == "engine"
        assert [r["id"] for r in found["results"]] == [added["bookmark"]["id"]]

    async def test_add_invalid_url(self, ctx):
        result = await call(ctx, "add_bookmark", url="ftp://example.com", title="x")
        assert "error" in result

    async def test_missing_required_argument(self, ctx):
        result = await call(ctx, "delete_bookmark")
        assert "bookmark_id" in result["error"]

    async def test_update_and_delete_reach_index(self, ctx, fake_client):
        added = await call(ctx, "add_bookmark", url="https://example.com", title="Before")
        bookmark_id = added["bookmark"]["id"]

        await call(ctx, "update_bookmark", bookmark_id=bookmark_id, changes={"title": "After"})
        await ctx.trigger.drain()
        assert fake_client.docs()[bookmark_id]["title"] == "After"

        deleted = await call(ctx, "delete_bookmark", bookmark_id=bookmark_id)
        assert deleted["status"] == "deleted"
        await ctx.trigger.drain()
        assert bookmark_id not in fake_client.docs()

    async def test_update_missing_bookmark(self, ctx):
        result = await call(ctx, "update_bookmark", bookmark_id="nope", changes={"title": "x"})
        assert "not found" in result["error"]

    async def test_store_metadata_makes_tags_searchable(self, ctx, fake_client):
        added = await call(ctx, "add_bookmark", url="https://example.com", title="Page")
        bookmark_id = added["bookmark"]["id"]

        result = await call(ctx, "store_bookmark_metadata", bookmark_id=bookmark_id, summary="About hooks.", tags=["react", " "])
        assert result["bookmark"]["ai_tags"] == ["react"]
        await ctx.trigger.drain()
        assert fake_client.docs()[bookmark_id]["ai_summary"] == "About hooks."

    async def test_update_with_wrong_types_changes_nothing(self, ctx, fake_client):
        added = await call(ctx, "add_bookmark", url="https://example.com", title="Page")
        bookmark_id = added["bookmark"]["id"]
        await ctx.trigger.drain()

        result = await call(ctx, "update_bookmark", bookmark_id=bookmark_id, changes={"ai_tags": "python"})
        assert "ai_tags" in result["error"]
        result = await call(ctx, "update_bookmark", bookmark_id=bookmark_id, changes={"is_favorite": "false"})
        assert "is_favorite" in result["error"]

        await ctx.trigger.drain()
        stored = await ctx.store.get_bookmark("u1", bookmark_id)
        assert stored.ai_tags is None and stored.is_favorite is False
        assert fake_client.docs()[bookmark_id]["ai_tags"] == []


@pytest.mark.asyncio
class TestSearchTools:
    async def test_invalid_options(self, ctx):
        result = await call(ctx, "search_bookmarks", query="x", sort_by="title")
        assert result["status"] == "invalid"

    async def test_invalid_date(self, ctx):
        result = await call(ctx, "search_bookmarks", query="x", date_from="last week")
        assert result["status"] == "invalid"

    async def test_unauthenticated(self, ctx, fake_client):
        fake_client.failures["search"] = SearchAuthenticationError("bad key", status_code=401)
        result = await call(ctx, "search_bookmarks", query="x")
        assert result["status"] == "unauthenticated"

    async def test_engine_down_uses_store(self, ctx, fake_client):
        await call(ctx, "add_bookmark", url="https://react.dev", title="React docs")
        fake_client.failures["search"] = SearchUnavailableError("down")

        result = await call(ctx, "search_bookmarks", query="react")
        assert result["source"] == "fallback"
        assert result["total_results"] == 1

    async def test_repeated_search_is_cached(self, ctx, fake_client):
        await call(ctx, "add_bookmark", url="https://react.dev", title="React docs")
        await ctx.trigger.drain()

        first = await call(ctx, "search_bookmarks", query="react")
        second = await call(ctx, "search_bookmarks", query=" React")
        assert second["results"] == first["results"]
        assert len(fake_client.search_calls) == 1

    async def test_writes_invalidate_cache(self, ctx, fake_client):
        await call(ctx, "add_bookmark", url="https://react.dev", title="React docs")
        await ctx.trigger.drain()
        await call(ctx, "search_bookmarks", query="react")

        await call(ctx, "add_bookmark", url="https://react.dev/learn", title="React tutorial")
        await ctx.trigger.drain()
        found = await call(ctx, "search_bookmarks", query="react")
        assert found["total_results"] == 2
        assert len(fake_client.search_calls) == 2

    async def test_cache_size_comes_from_config(self, ctx):
        assert ctx.session.cache.max_entries == ctx.config.search.cache_size
        assert ctx.session.debounce_ms == ctx.config.search.debounce_ms

    async def test_recent_searches(self, ctx):
        for query in ("react", "vue", "react"):
            await call(ctx, "search_bookmarks", query=query)
        result = await call(ctx, "recent_searches")
        assert result["queries"] == ["react", "vue"]

    async def test_suggestions(self, ctx, fake_client):
        fake_client.search_response = {"hits": [{"document": {"title": "React hooks"}}]}
        result = await call(ctx, "get_search_suggestions", partial="rea")
        assert result["suggestions"] == ["React hooks"]


@pytest.mark.asyncio
class TestIndexTools:
    async def test_health_check(self, ctx):
        result = await call(ctx, "health_check")
        assert result["status"] == "ok"
        assert result["collection"] == "bookmarks"

    async def test_init_collection_is_idempotent(self, ctx):
        first = await call(ctx, "init_search_collection")
        second = await call(ctx, "init_search_collection")
        assert first["created"] is True
        assert second["created"] is False

    async def test_sync_index_reports_result(self, ctx, fake_client):
        added = await call(ctx, "add_bookmark", url="https://example.com", title="Page")
        await ctx.trigger.drain()
        fake_client.documents.clear()

        result = await call(ctx, "sync_index", action="index", bookmark_id=added["bookmark"]["id"])
        assert result["ok"] is True
        assert added["bookmark"]["id"] in fake_client.docs()

    async def test_sync_index_rejects_unknown_action(self, ctx):
        result = await call(ctx, "sync_index", action="purge")
        assert "Unknown sync action" in result["error"]

    async def test_reindex(self, ctx, fake_client, bookmark_factory):
        await ctx.sync_service.index_one(bookmark_factory("stale", user_id="u1"))
        await call(ctx, "add_bookmark", url="https://example.com", title="Page")

        result = await call(ctx, "reindex_bookmarks")
        assert result["ok"] is True
        assert result["count"] == 1
        assert "stale" not in fake_client.docs()

    async def test_import_chrome_bookmarks(self, ctx, fake_client, sample_chrome_path):
        result = await call(ctx, "import_chrome_bookmarks", path=str(sample_chrome_path))
        assert result["imported"] == 4
        assert result["skipped"] == 1
        assert result["reindex"]["count"] == 4
        assert len(fake_client.docs()) == 4

    async def test_import_missing_file(self, ctx, tmp_path):
        result = await call(ctx, "import_chrome_bookmarks", path=str(tmp_path / "missing"))
        assert "not found" in result["error"]


@pytest.mark.asyncio
class TestBuildContext:
    async def test_wires_services(self, db_path):
        def handler(request):
            return httpx.Response(200, json={"ok": True})

        config = Config(typesense=TypesenseConfig(api_key="k"), db_path=db_path, owner_id="u1")
        ctx = build_context(config, transport=httpx.MockTransport(handler))
        await ctx.store.initialize()
        try:
            assert ctx.searcher.fallback_store is ctx.store
            assert ctx.searcher.sync_service is ctx.sync_service
            assert (await ctx.client.health()) == {"ok": True}
        finally:
            ctx.trigger.detach()
            await ctx.client.aclose()
            await ctx.store.close()
