"""MCP server exposing bookmark storage and Typesense-backed search."""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from mcp.server import Server
from mcp.types import TextContent, Tool

from mindmark_search import enrichment
from mindmark_search.config import Config, get_config
from mindmark_search.errors import (
    BookmarkValidationError,
    QueryValidationError,
    SearchAuthenticationError,
    SearchEngineError,
)
from mindmark_search.importer import get_chrome_bookmarks_path, import_chrome_bookmarks
from mindmark_search.indexing import IndexSyncService
from mindmark_search.models import CONTENT_TYPES, DateRange, SearchFilters, SearchOptions
from mindmark_search.searcher import BookmarkSearcher
from mindmark_search.session import QueryCache, SearchSession
from mindmark_search.store import UPDATABLE_FIELDS, BookmarkStore
from mindmark_search.sync_trigger import SyncTrigger
from mindmark_search.typesense_client import TypesenseClient, check_health, ensure_collection

logger = logging.getLogger(__name__)


@dataclass
class ServerContext:
    """Everything a tool handler needs. Built once at startup."""
    config: Config
    store: BookmarkStore
    client: TypesenseClient
    sync_service: IndexSyncService
    searcher: BookmarkSearcher
    trigger: SyncTrigger
    session: Optional[SearchSession] = field(default=None)

    def __post_init__(self) -> None:
        if self.session is None:
            self.session = SearchSession(
                self.searcher,
                self.owner_id,
                debounce_ms=self.config.search.debounce_ms,
                limit=self.config.search.default_limit,
                cache=QueryCache(self.config.search.cache_size),
            )
        # Cached responses go stale on every write and again once the index catches up.
        self.store.subscribe(self._invalidate_cache)
        self.trigger.on_result = self._invalidate_cache

    def _invalidate_cache(self, _event: Any = None) -> None:
        self.session.cache.clear()

    @property
    def owner_id(self) -> str:
        return self.config.owner_id

    @property
    def collection(self) -> str:
        return self.config.typesense.collection


def build_context(
    config: Optional[Config] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServerContext:
    """Wire up the store, engine client and services.

    The store still needs initialize() before use. The sync trigger is
    attached to the store, so every committed write is mirrored into the
    index in the background.
    """
    config = config or get_config()
    store = BookmarkStore(config.db_path)
    client = TypesenseClient(config.typesense, transport=transport)
    sync_service = IndexSyncService(client, config.typesense.collection)
    searcher = BookmarkSearcher(
        client,
        config.typesense.collection,
        sync_service=sync_service,
        fallback_store=store,
        config=config.search,
    )
    trigger = SyncTrigger(sync_service, store=store)
    trigger.attach(store)
    return ServerContext(config, store, client, sync_service, searcher, trigger)


def _json(data: Any) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def _error(message: str, **extra: Any) -> List[TextContent]:
    return _json({"error": message, **extra})


def _parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise QueryValidationError(f"{name} is not an ISO-8601 date: {value!r}") from e


# ============================================================================
# Tool handlers
# ============================================================================

async def health_check_tool(ctx: ServerContext) -> List[TextContent]:
    """Report engine reachability and basic store figures."""
    engine = await check_health(ctx.client)
    bookmarks = await ctx.store.list_bookmarks(ctx.owner_id)
    return _json({
        "status": "ok" if engine["healthy"] else "degraded",
        "typesense": engine,
        "collection": ctx.collection,
        "owner_id": ctx.owner_id,
        "bookmark_count": len(bookmarks),
        "pending_syncs": ctx.trigger.pending,
    })


async def init_search_collection_tool(ctx: ServerContext) -> List[TextContent]:
    try:
        created = await ensure_collection(ctx.client, ctx.collection)
    except SearchEngineError as e:
        return _error(f"Could not initialise collection: {e}")
    return _json({"collection": ctx.collection, "created": created})


async def search_bookmarks_tool(
    ctx: ServerContext,
    query: str,
    content_types: Optional[List[str]] = None,
    collection_ids: Optional[List[str]] = None,
    is_favorite: Optional[bool] = None,
    is_archived: Optional[bool] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    sort_by: str = "relevance",
    sort_order: str = "desc",
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[TextContent]:
    """Full-text search over the owner's bookmarks."""
    try:
        start = _parse_date(date_from, "date_from")
        end = _parse_date(date_to, "date_to")
        options = SearchOptions(
            query=query or "",
            owner_id=ctx.owner_id,
            filters=SearchFilters(
                content_types=list(content_types or []),
                collection_ids=list(collection_ids or []),
                is_favorite=is_favorite,
                is_archived=is_archived,
                date_range=DateRange(start, end) if (start or end) else None,
            ),
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit or ctx.config.search.default_limit,
            offset=offset,
        )
        response = await ctx.session.search(options)
    except QueryValidationError as e:
        return _error(str(e), status="invalid")
    except SearchAuthenticationError as e:
        return _error(str(e), status="unauthenticated")
    except SearchEngineError as e:
        return _error(str(e), status="unavailable")

    return _json(response.to_dict())


async def get_search_suggestions_tool(ctx: ServerContext, partial: str) -> List[TextContent]:
    suggestions = await ctx.searcher.get_suggestions(ctx.owner_id, partial)
    return _json({"partial": partial, "suggestions": suggestions})


async def recent_searches_tool(ctx: ServerContext) -> List[TextContent]:
    return _json({"queries": ctx.session.history})


async def add_bookmark_tool(
    ctx: ServerContext,
    url: str,
    title: str,
    description: Optional[str] = None,
    content_type: Optional[str] = None,
    collection_id: Optional[str] = None,
    collection_name: Optional[str] = None,
    is_favorite: bool = False,
) -> List[TextContent]:
    """Save a bookmark; its search document follows in the background."""
    try:
        bookmark = await ctx.store.create_bookmark(
            ctx.owner_id,
            url,
            title,
            description=description,
            content_type=content_type,
            collection_id=collection_id,
            collection_name=collection_name,
            is_favorite=is_favorite,
        )
    except BookmarkValidationError as e:
        return _error(str(e))
    return _json({"status": "created", "bookmark": bookmark.to_record()})


async def update_bookmark_tool(ctx: ServerContext, bookmark_id: str, changes: Dict[str, Any]) -> List[TextContent]:
    try:
        bookmark = await ctx.store.update_bookmark(ctx.owner_id, bookmark_id, **changes)
    except BookmarkValidationError as e:
        return _error(str(e))
    if bookmark is None:
        return _error(f"Bookmark not found: {bookmark_id}")
    return _json({"status": "updated", "bookmark": bookmark.to_record()})


async def delete_bookmark_tool(ctx: ServerContext, bookmark_id: str) -> List[TextContent]:
    deleted = await ctx.store.delete_bookmark(ctx.owner_id, bookmark_id)
    if not deleted:
        return _error(f"Bookmark not found: {bookmark_id}")
    return _json({"status": "deleted", "id": bookmark_id})


async def sync_index_tool(ctx: ServerContext, action: str, bookmark_id: Optional[str] = None) -> List[TextContent]:
    """Run one index operation and wait for its result."""
    bookmark = None
    if action in ("index", "update"):
        if not bookmark_id:
            return _error(f"Action '{action}' requires bookmark_id")
        bookmark = await ctx.store.get_bookmark(ctx.owner_id, bookmark_id)
        if bookmark is None:
            return _error(f"Bookmark not found: {bookmark_id}")

    try:
        task = ctx.trigger.sync_index(action, ctx.owner_id, bookmark=bookmark, bookmark_id=bookmark_id)
    except ValueError as e:
        return _error(str(e))
    result = await task
    return _json(result.to_dict())


async def reindex_bookmarks_tool(ctx: ServerContext) -> List[TextContent]:
    """Rebuild the owner's documents from the store."""
    await ctx.trigger.drain()
    result = await ctx.trigger.sync_index("reindex", ctx.owner_id)
    return _json(result.to_dict())


async def fetch_page_content_tool(ctx: ServerContext, url: str) -> List[TextContent]:
    content = await enrichment.fetch_page_content(url, ctx.config.enrichment)
    if content is None:
        return _error(f"Could not fetch content from {url}")
    return _json({"url": url, "content": content})


async def store_bookmark_metadata_tool(
    ctx: ServerContext,
    bookmark_id: str,
    summary: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> List[TextContent]:
    """Attach an agent-written summary and tags to a bookmark."""
    changes: Dict[str, Any] = {}
    if summary is not None:
        changes["ai_summary"] = summary
    if tags is not None:
        changes["ai_tags"] = tags
    if not changes:
        return _error("Provide summary or tags")
    return await update_bookmark_tool(ctx, bookmark_id, changes)


async def import_chrome_bookmarks_tool(
    ctx: ServerContext,
    path: Optional[str] = None,
    profile: str = "Default",
) -> List[TextContent]:
    bookmarks_path = Path(path).expanduser() if path else get_chrome_bookmarks_path(profile)
    try:
        summary = await import_chrome_bookmarks(ctx.store, ctx.owner_id, bookmarks_path)
    except FileNotFoundError as e:
        return _error(str(e))
    except json.JSONDecodeError as e:
        return _error(f"Malformed bookmarks file: {e}")

    await ctx.trigger.drain()
    result = await ctx.trigger.sync_index("reindex", ctx.owner_id)
    return _json({**summary, "reindex": result.to_dict()})


# ============================================================================
# Server
# ============================================================================

_FILTER_PROPERTIES = {
    "content_types": {
        "type": "array",
        "items": {"type": "string", "enum": list(CONTENT_TYPES)},
        "description": "Only these content types",
    },
    "collection_ids": {
        "type": "array",
        "items": {"type": "string"},
        "description": "Only bookmarks in these collections",
    },
    "is_favorite": {"type": "boolean"},
    "is_archived": {"type": "boolean"},
    "date_from": {"type": "string", "description": "ISO-8601 lower bound on creation time"},
    "date_to": {"type": "string", "description": "ISO-8601 upper bound on creation time"},
}


def _tools() -> List[Tool]:
    return [
        Tool(
            name="health_check",
            description="Check search engine reachability and bookmark store status.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="init_search_collection",
            description="Create the bookmarks search collection if it does not exist.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="search_bookmarks",
            description=(
                "Full-text search over saved bookmarks with filters, sorting and facets. "
                "An empty query lists everything that matches the filters."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search text"},
                    **_FILTER_PROPERTIES,
                    "sort_by": {"type": "string", "enum": ["relevance", "created", "updated"]},
                    "sort_order": {"type": "string", "enum": ["asc", "desc"]},
                    "limit": {"type": "integer", "minimum": 1, "maximum": 250},
                    "offset": {"type": "integer", "minimum": 0},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="get_search_suggestions",
            description="Autocomplete suggestions from bookmark titles and tags.",
            inputSchema={
                "type": "object",
                "properties": {"partial": {"type": "string", "description": "Partial query text"}},
                "required": ["partial"],
            },
        ),
        Tool(
            name="recent_searches",
            description="The last few distinct search queries, most recent first.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="add_bookmark",
            description="Save a new bookmark. It becomes searchable shortly after.",
            inputSchema={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "content_type": {"type": "string", "enum": list(CONTENT_TYPES)},
                    "collection_id": {"type": "string"},
                    "collection_name": {"type": "string"},
                    "is_favorite": {"type": "boolean"},
                },
                "required": ["url", "title"],
            },
        ),
        Tool(
            name="update_bookmark",
            description="Change fields of an existing bookmark.",
            inputSchema={
                "type": "object",
                "properties": {
                    "bookmark_id": {"type": "string"},
                    "changes": {
                        "type": "object",
                        "description": f"Fields to change: {', '.join(UPDATABLE_FIELDS)}",
                    },
                },
                "required": ["bookmark_id", "changes"],
            },
        ),
        Tool(
            name="delete_bookmark",
            description="Delete a bookmark and remove it from search.",
            inputSchema={
                "type": "object",
                "properties": {"bookmark_id": {"type": "string"}},
                "required": ["bookmark_id"],
            },
        ),
        Tool(
            name="sync_index",
            description="Run a single index operation (index, update, delete or reindex) and report the result.",
            inputSchema={
                "type": "object",
                "properties": {
                    "action": {"type": "string", "enum": ["index", "update", "delete", "reindex"]},
                    "bookmark_id": {"type": "string"},
                },
                "required": ["action"],
            },
        ),
        Tool(
            name="reindex_bookmarks",
            description="Rebuild every search document for the current user from the bookmark store.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="fetch_page_content",
            description=(
                "Fetch a page and return its main text, so you can write a summary and tags "
                "and save them with store_bookmark_metadata."
            ),
            inputSchema={
                "type": "object",
                "properties": {"url": {"type": "string"}},
                "required": ["url"],
            },
        ),
        Tool(
            name="store_bookmark_metadata",
            description="Save an AI summary and tags for a bookmark. Both become searchable.",
            inputSchema={
                "type": "object",
                "properties": {
                    "bookmark_id": {"type": "string"},
                    "summary": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["bookmark_id"],
            },
        ),
        Tool(
            name="import_chrome_bookmarks",
            description="Import bookmarks from a Chrome profile, then rebuild the search index.",
            inputSchema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Bookmarks file; defaults to the Chrome profile"},
                    "profile": {"type": "string", "description": "Chrome profile name (default: Default)"},
                },
            },
        ),
    ]


def _missing(name: str) -> List[TextContent]:
    return _error(f"'{name}' parameter is required")


async def dispatch(ctx: ServerContext, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
    """Route a tool call to its handler."""
    args = arguments or {}

    if name == "health_check":
        return await health_check_tool(ctx)
    elif name == "init_search_collection":
        return await init_search_collection_tool(ctx)
    elif name == "search_bookmarks":
        if "query" not in args:
            return _missing("query")
        return await search_bookmarks_tool(
            ctx,
            args["query"],
            content_types=args.get("content_types"),
            collection_ids=args.get("collection_ids"),
            is_favorite=args.get("is_favorite"),
            is_archived=args.get("is_archived"),
            date_from=args.get("date_from"),
            date_to=args.get("date_to"),
            sort_by=args.get("sort_by", "relevance"),
            sort_order=args.get("sort_order", "desc"),
            limit=args.get("limit"),
            offset=args.get("offset", 0),
        )
    elif name == "get_search_suggestions":
        return await get_search_suggestions_tool(ctx, args.get("partial", ""))
    elif name == "recent_searches":
        return await recent_searches_tool(ctx)
    elif name == "add_bookmark":
        if not args.get("url"):
            return _missing("url")
        return await add_bookmark_tool(
            ctx,
            args["url"],
            args.get("title", ""),
            description=args.get("description"),
            content_type=args.get("content_type"),
            collection_id=args.get("collection_id"),
            collection_name=args.get("collection_name"),
            is_favorite=bool(args.get("is_favorite", False)),
        )
    elif name == "update_bookmark":
        if not args.get("bookmark_id"):
            return _missing("bookmark_id")
        return await update_bookmark_tool(ctx, args["bookmark_id"], dict(args.get("changes") or {}))
    elif name == "delete_bookmark":
        if not args.get("bookmark_id"):
            return _missing("bookmark_id")
        return await delete_bookmark_tool(ctx, args["bookmark_id"])
    elif name == "sync_index":
        if not args.get("action"):
            return _missing("action")
        return await sync_index_tool(ctx, args["action"], args.get("bookmark_id"))
    elif name == "reindex_bookmarks":
        return await reindex_bookmarks_tool(ctx)
    elif name == "fetch_page_content":
        if not args.get("url"):
            return _missing("url")
        return await fetch_page_content_tool(ctx, args["url"])
    elif name == "store_bookmark_metadata":
        if not args.get("bookmark_id"):
            return _missing("bookmark_id")
        return await store_bookmark_metadata_tool(ctx, args["bookmark_id"], args.get("summary"), args.get("tags"))
    elif name == "import_chrome_bookmarks":
        return await import_chrome_bookmarks_tool(ctx, args.get("path"), args.get("profile", "Default"))
    else:
        raise ValueError(f"Unknown tool: {name}")


def create_server(ctx: ServerContext) -> Server:
    """Create the MCP server with every tool bound to ctx."""
    server = Server("mindmark-search")

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return _tools()

    @server.call_tool()
    async def call_tool(name: str, arguments: Any) -> List[TextContent]:
        return await dispatch(ctx, name, arguments)

    return server
