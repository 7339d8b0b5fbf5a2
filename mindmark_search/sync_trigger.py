"""Fire-and-forget index updates after primary-store writes.

Writes to the bookmark store complete first; the matching index operation
is scheduled as a background task and its outcome is only logged. A failed
index update never turns a successful write into an error.
"""
import asyncio
import logging
from typing import Callable, Optional, Set

from mindmark_search.indexing import IndexSyncService
from mindmark_search.models import SyncResult
from mindmark_search.store import BookmarkChange, BookmarkStore
from mindmark_search.transform import BookmarkLike

logger = logging.getLogger(__name__)

SYNC_ACTIONS = ("index", "update", "delete", "reindex")

# Store change-feed action -> sync action
CHANGE_ACTIONS = {
    "create": "index",
    "update": "update",
    "delete": "delete",
}


class SyncTrigger:
    """Schedule index operations without blocking the caller."""

    def __init__(
        self,
        sync_service: IndexSyncService,
        store: Optional[BookmarkStore] = None,
        max_retries: int = 0,
        retry_delay: float = 0.5,
        on_result: Optional[Callable[[SyncResult], None]] = None,
    ):
        self.sync_service = sync_service
        self.store = store
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.on_result = on_result
        self.last_result: Optional[SyncResult] = None
        self._pending: Set[asyncio.Task] = set()
        self._attached: Optional[BookmarkStore] = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def sync_index(
        self,
        action: str,
        owner_id: str,
        bookmark: Optional[BookmarkLike] = None,
        bookmark_id: Optional[str] = None,
    ) -> asyncio.Task:
        """Schedule an index update and return immediately.

        Args:
            action: One of index, update, delete, reindex
            owner_id: Owner whose index is affected
            bookmark: Required for index and update
            bookmark_id: Required for delete

        Returns:
            The background task; awaiting it yields the SyncResult

        Raises:
            ValueError: If the action is unknown or its payload is missing
        """
        if action not in SYNC_ACTIONS:
            raise ValueError(f"Unknown sync action: {action}")
        if action in ("index", "update") and bookmark is None:
            raise ValueError(f"Action '{action}' requires a bookmark")
        if action == "delete" and not bookmark_id:
            raise ValueError("Action 'delete' requires a bookmark_id")
        if action == "reindex" and self.store is None:
            raise ValueError("Action 'reindex' requires a bookmark store")
        if not owner_id:
            raise ValueError("owner_id is required")

        task = asyncio.get_running_loop().create_task(
            self._run(action, owner_id, bookmark, bookmark_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled sync to finish."""
        while self._pending:
            await asyncio.wait(list(self._pending))

    # ------------------------------------------------------------------
    # Store change feed
    # ------------------------------------------------------------------

    def attach(self, store: BookmarkStore) -> None:
        """Sync the index automatically after each committed store write."""
        self.detach()
        if self.store is None:
            self.store = store
        store.subscribe(self._on_change)
        self._attached = store

    def detach(self) -> None:
        if self._attached is not None:
            self._attached.unsubscribe(self._on_change)
            self._attached = None

    def _on_change(self, change: BookmarkChange) -> None:
        action = CHANGE_ACTIONS.get(change.action)
        if action is None:
            logger.warning("Ignoring unknown store change: %s", change.action)
            return
        self.sync_index(
            action,
            change.owner_id,
            bookmark=change.bookmark,
            bookmark_id=change.bookmark_id,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        action: str,
        owner_id: str,
        bookmark: Optional[BookmarkLike],
        bookmark_id: Optional[str],
    ) -> SyncResult:
        if action in ("index", "update"):
            return await self.sync_service.index_one(bookmark)
        if action == "delete":
            return await self.sync_service.remove_one(bookmark_id)

        bookmarks = await self.store.list_bookmarks(owner_id)
        return await self.sync_service.reindex_for_owner(owner_id, bookmarks)

    async def _run(
        self,
        action: str,
        owner_id: str,
        bookmark: Optional[BookmarkLike],
        bookmark_id: Optional[str],
    ) -> SyncResult:
        attempt = 0
        while True:
            try:
                result = await self._execute(action, owner_id, bookmark, bookmark_id)
            except Exception as e:
                logger.exception("Index %s for owner %s raised", action, owner_id)
                result = SyncResult.failure(action, str(e))

            # Partial bulk failures are reported, not retried.
            if result.error is None or attempt >= self.max_retries:
                break
            attempt += 1
            logger.info("Retrying index %s for owner %s (attempt %d)", action, owner_id, attempt + 1)
            await asyncio.sleep(self.retry_delay)

        if result.error is not None:
            logger.error("Index %s for owner %s failed: %s", action, owner_id, result.error)
        elif result.item_errors:
            logger.warning(
                "Index %s for owner %s finished with %d item errors",
                action, owner_id, len(result.item_errors),
            )
        else:
            logger.debug("Index %s for owner %s succeeded (%d)", action, owner_id, result.count)

        self.last_result = result
        if self.on_result is not None:
            self.on_result(result)
        return result
