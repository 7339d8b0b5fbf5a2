"""SQLite store for canonical bookmark records, with a change feed.

This is the primary store: search documents are derived from it, and
subscribers are notified after every committed write so the index can be
brought up to date.
"""
import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import aiosqlite

from mindmark_search.config import DEFAULT_DB_PATH
from mindmark_search.errors import BookmarkValidationError
from mindmark_search.models import Bookmark, SearchFilters, validate_bookmark_fields
from mindmark_search.urls import suggest_content_type, validate_and_normalize_url

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("url", "title", "description", "content_type", "ai_summary", "collection_id", "collection_name")
FLAG_FIELDS = ("is_favorite", "is_archived")

UPDATABLE_FIELDS = (
    "url",
    "title",
    "description",
    "content_type",
    "ai_summary",
    "ai_tags",
    "collection_id",
    "collection_name",
    "is_favorite",
    "is_archived",
)


@dataclass
class BookmarkChange:
    """A committed write, as delivered to change-feed subscribers."""
    action: str  # "create", "update" or "delete"
    owner_id: str
    bookmark_id: str
    bookmark: Optional[Bookmark] = None


ChangeListener = Callable[[BookmarkChange], Union[None, Awaitable[None]]]


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _now() -> str:
    return _iso(datetime.now(timezone.utc))


class BookmarkStore:
    """Async SQLite store for bookmarks, scoped by owner."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the bookmark store.

        Args:
            db_path: Path to SQLite database. Defaults to ~/.mindmark/bookmarks.db
        """
        self.db_path = db_path or DEFAULT_DB_PATH
        self._connection: Optional[aiosqlite.Connection] = None
        self._listeners: List[ChangeListener] = []

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS bookmarks (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                url TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                content_type TEXT NOT NULL DEFAULT 'webpage',
                ai_summary TEXT,
                ai_tags TEXT,
                collection_id TEXT,
                collection_name TEXT,
                is_favorite INTEGER NOT NULL DEFAULT 0,
                is_archived INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_bookmarks_user ON bookmarks(user_id, created_at DESC)
        """)

        await self._connection.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._connection

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callback invoked after each committed write."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, change: BookmarkChange) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(change)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # The write is already committed; a broken subscriber must not undo it.
                logger.exception("Change listener failed for %s %s", change.action, change.bookmark_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_bookmark(
        self,
        owner_id: str,
        url: str,
        title: str,
        description: Optional[str] = None,
        content_type: Optional[str] = None,
        ai_summary: Optional[str] = None,
        ai_tags: Optional[List[str]] = None,
        collection_id: Optional[str] = None,
        collection_name: Optional[str] = None,
        is_favorite: bool = False,
        is_archived: bool = False,
    ) -> Bookmark:
        """Create a bookmark.

        Args:
            owner_id: Owning user
            url: Bookmark URL; normalised before storing
            title: Title (1..500 chars)
            content_type: Guessed from the URL when omitted

        Returns:
            The stored Bookmark

        Raises:
            BookmarkValidationError: If the input is invalid
        """
        conn = self._conn()
        if not owner_id:
            raise BookmarkValidationError("owner_id is required")

        normalized_url = validate_and_normalize_url(url)
        content_type = content_type or suggest_content_type(normalized_url)
        title = (title or "").strip()
        validate_bookmark_fields(normalized_url, title, description, content_type)

        now = _now()
        bookmark = Bookmark(
            id=str(uuid.uuid4()),
            user_id=owner_id,
            url=normalized_url,
            title=title,
            description=description,
            content_type=content_type,
            ai_summary=ai_summary,
            ai_tags=list(ai_tags) if ai_tags else None,
            collection_id=collection_id,
            collection_name=collection_name,
            is_favorite=is_favorite,
            is_archived=is_archived,
            created_at=now,
            updated_at=now,
        )

        await conn.execute("""
            INSERT INTO bookmarks (id, user_id, url, title, description, content_type, ai_summary,
                                   ai_tags, collection_id, collection_name, is_favorite, is_archived,
                                   created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            bookmark.id, bookmark.user_id, bookmark.url, bookmark.title, bookmark.description,
            bookmark.content_type, bookmark.ai_summary, _dump_tags(bookmark.ai_tags),
            bookmark.collection_id, bookmark.collection_name, int(bookmark.is_favorite),
            int(bookmark.is_archived), bookmark.created_at, bookmark.updated_at,
        ))
        await conn.commit()

        await self._notify(BookmarkChange("create", owner_id, bookmark.id, bookmark))
        return bookmark

    async def update_bookmark(self, owner_id: str, bookmark_id: str, **changes: Any) -> Optional[Bookmark]:
        """Apply changes to a bookmark.

        Args:
            owner_id: Owning user
            bookmark_id: Bookmark to update
            **changes: Subset of UPDATABLE_FIELDS

        Returns:
            Updated Bookmark, or None if not found for this owner

        Raises:
            BookmarkValidationError: On unknown fields or invalid values
        """
        conn = self._conn()
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise BookmarkValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        current = await self.get_bookmark(owner_id, bookmark_id)
        if current is None:
            return None

        changes = {name: _coerce_change(name, value) for name, value in changes.items()}
        if "url" in changes:
            changes["url"] = validate_and_normalize_url(changes["url"])
        if changes.get("title") is not None:
            changes["title"] = changes["title"].strip()

        merged = current.to_record()
        merged.update(changes)
        validate_bookmark_fields(merged["url"], merged["title"], merged["description"], merged["content_type"])
        merged["updated_at"] = _now()

        columns = list(changes) + ["updated_at"]
        values = [_to_column(name, merged[name]) for name in columns]
        assignments = ", ".join(f"{name} = ?" for name in columns)

        await conn.execute(
            f"UPDATE bookmarks SET {assignments} WHERE id = ? AND user_id = ?",
            (*values, bookmark_id, owner_id),
        )
        await conn.commit()

        # Same values that were written, so the index sees what the store holds.
        updated = Bookmark.from_record(merged)
        await self._notify(BookmarkChange("update", owner_id, bookmark_id, updated))
        return updated

    async def delete_bookmark(self, owner_id: str, bookmark_id: str) -> bool:
        """Delete a bookmark.

        Returns:
            True if deleted, False if not found
        """
        conn = self._conn()
        cursor = await conn.execute(
            "DELETE FROM bookmarks WHERE id = ? AND user_id = ?",
            (bookmark_id, owner_id),
        )
        await conn.commit()

        if cursor.rowcount <= 0:
            return False

        await self._notify(BookmarkChange("delete", owner_id, bookmark_id))
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_bookmark(self, owner_id: str, bookmark_id: str) -> Optional[Bookmark]:
        cursor = await self._conn().execute(
            "SELECT * FROM bookmarks WHERE id = ? AND user_id = ?",
            (bookmark_id, owner_id),
        )
        row = await cursor.fetchone()
        return _row_to_bookmark(row) if row is not None else None

    async def find_by_url(self, owner_id: str, url: str) -> Optional[Bookmark]:
        cursor = await self._conn().execute(
            "SELECT * FROM bookmarks WHERE url = ? AND user_id = ? LIMIT 1",
            (url, owner_id),
        )
        row = await cursor.fetchone()
        return _row_to_bookmark(row) if row is not None else None

    async def list_bookmarks(self, owner_id: str, include_archived: bool = True) -> List[Bookmark]:
        """All bookmarks for an owner, newest first."""
        sql = "SELECT * FROM bookmarks WHERE user_id = ?"
        if not include_archived:
            sql += " AND is_archived = 0"
        sql += " ORDER BY created_at DESC"

        cursor = await self._conn().execute(sql, (owner_id,))
        rows = await cursor.fetchall()
        return [_row_to_bookmark(row) for row in rows]

    async def search_bookmarks(
        self,
        owner_id: str,
        query: str,
        limit: int = 20,
        offset: int = 0,
        filters: Optional[SearchFilters] = None,
        sort_by: str = "relevance",
        sort_order: str = "desc",
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Substring search on title, description and URL.

        Used as the lightweight path when the search engine is unavailable.
        All filters apply, the date range included. Relevance has no meaning
        here, so it orders by creation time.

        Returns:
            (rows as dicts, total number of matches)
        """
        filters = filters or SearchFilters()
        conditions = ["user_id = ?"]
        params: List[Any] = [owner_id]

        text = (query or "").strip()
        if text:
            pattern = f"%{_escape_like(text)}%"
            conditions.append(
                "(title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\' OR url LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        if filters.content_types:
            conditions.append(f"content_type IN ({', '.join('?' for _ in filters.content_types)})")
            params.extend(filters.content_types)
        if filters.collection_ids:
            conditions.append(f"collection_id IN ({', '.join('?' for _ in filters.collection_ids)})")
            params.extend(filters.collection_ids)
        if filters.is_favorite is not None:
            conditions.append("is_favorite = ?")
            params.append(int(filters.is_favorite))
        if filters.is_archived is not None:
            conditions.append("is_archived = ?")
            params.append(int(filters.is_archived))
        date_range = filters.date_range
        if date_range and (date_range.start or date_range.end):
            start = date_range.start or datetime.fromtimestamp(0, timezone.utc)
            end = date_range.end or datetime.now(timezone.utc)
            conditions.append("created_at BETWEEN ? AND ?")
            params.extend([_iso(start), _iso(end)])

        where = " AND ".join(conditions)
        order_column = "updated_at" if sort_by == "updated" else "created_at"
        direction = "ASC" if sort_order == "asc" else "DESC"
        conn = self._conn()

        cursor = await conn.execute(f"SELECT COUNT(*) FROM bookmarks WHERE {where}", params)
        total = (await cursor.fetchone())[0]

        cursor = await conn.execute(
            f"SELECT * FROM bookmarks WHERE {where} ORDER BY {order_column} {direction} LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        rows = await cursor.fetchall()
        return [_row_to_bookmark(row).to_record() for row in rows], total


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _coerce_change(name: str, value: Any) -> Any:
    """Check the type of one changed field, returning the value to store."""
    if name == "ai_tags":
        if value is None:
            return None
        if not isinstance(value, (list, tuple)) or not all(isinstance(tag, str) for tag in value):
            raise BookmarkValidationError("ai_tags must be a list of strings")
        tags = [tag.strip() for tag in value if tag.strip()]
        return tags or None
    if name in FLAG_FIELDS:
        if not isinstance(value, bool):
            raise BookmarkValidationError(f"{name} must be true or false")
        return value
    if name in TEXT_FIELDS and value is not None and not isinstance(value, str):
        raise BookmarkValidationError(f"{name} must be a string")
    return value


def _dump_tags(tags: Optional[List[str]]) -> Optional[str]:
    return json.dumps(list(tags)) if tags else None


def _to_column(name: str, value: Any) -> Any:
    if name == "ai_tags":
        return _dump_tags(value)
    if name in ("is_favorite", "is_archived"):
        return int(bool(value))
    return value


def _row_to_bookmark(row: aiosqlite.Row) -> Bookmark:
    """Convert a database row to a Bookmark, parsing tags and flags."""
    result = dict(row)

    if result.get("ai_tags"):
        try:
            result["ai_tags"] = json.loads(result["ai_tags"])
        except json.JSONDecodeError:
            result["ai_tags"] = []
    else:
        result["ai_tags"] = None

    result["is_favorite"] = bool(result.get("is_favorite"))
    result["is_archived"] = bool(result.get("is_archived"))
    return Bookmark.from_record(result)
