"""Keep the Typesense index in sync with the canonical bookmark store.

Every operation returns a SyncResult instead of raising, so an index
failure can never break the primary-store mutation that triggered it.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Set

from mindmark_search.errors import DocumentNotFoundError, QueryValidationError, SearchEngineError
from mindmark_search.models import ItemError, SyncResult
from mindmark_search.query import owner_clause
from mindmark_search.schema import DEFAULT_COLLECTION
from mindmark_search.transform import BookmarkLike, to_search_document
from mindmark_search.typesense_client import TypesenseClient

logger = logging.getLogger(__name__)


class IndexSyncService:
    """Upsert, delete, bulk-import and rebuild bookmark documents."""

    def __init__(self, client: TypesenseClient, collection: str = DEFAULT_COLLECTION):
        self.client = client
        self.collection = collection
        self._owner_locks: Dict[str, asyncio.Lock] = {}
        self._reindexing: Set[str] = set()

    def is_reindexing(self, owner_id: str) -> bool:
        """True while the owner's document set is being deleted and rebuilt."""
        return owner_id in self._reindexing

    async def index_one(self, bookmark: BookmarkLike) -> SyncResult:
        """Upsert a single bookmark. Replaces any existing document with the same id."""
        document = to_search_document(bookmark)
        try:
            await self.client.upsert_document(self.collection, document)
        except SearchEngineError as e:
            logger.error("Failed to index bookmark %s: %s", document["id"], e)
            return SyncResult.failure("index", str(e))

        logger.debug("Indexed bookmark %s", document["id"])
        return SyncResult.success("index")

    async def remove_one(self, bookmark_id: str) -> SyncResult:
        """Delete a bookmark document. A missing document counts as removed."""
        try:
            await self.client.delete_document(self.collection, bookmark_id)
        except DocumentNotFoundError:
            logger.debug("Bookmark %s was not in the index", bookmark_id)
            return SyncResult.success("delete", count=0)
        except SearchEngineError as e:
            logger.error("Failed to remove bookmark %s from index: %s", bookmark_id, e)
            return SyncResult.failure("delete", str(e))

        logger.debug("Removed bookmark %s from index", bookmark_id)
        return SyncResult.success("delete")

    async def index_bulk(self, bookmarks: Iterable[BookmarkLike]) -> SyncResult:
        """Upsert a batch of bookmarks in one engine round trip.

        The engine may apply part of the batch; per-document failures are
        returned in item_errors and count holds the number that succeeded.
        """
        documents = [to_search_document(b) for b in bookmarks]
        if not documents:
            return SyncResult.success("bulk", count=0)

        try:
            results = await self.client.import_documents(self.collection, documents, action="upsert")
        except SearchEngineError as e:
            logger.error("Failed to bulk index %d bookmarks: %s", len(documents), e)
            return SyncResult.failure("bulk", str(e))

        item_errors = _collect_item_errors(documents, results)
        count = len(documents) - len(item_errors)
        if item_errors:
            logger.warning(
                "Bulk index applied %d of %d bookmarks; %d failed",
                count, len(documents), len(item_errors),
            )
        else:
            logger.info("Bulk indexed %d bookmarks", count)
        return SyncResult.success("bulk", count=count, item_errors=item_errors)

    async def reindex_for_owner(self, owner_id: str, bookmarks: Iterable[BookmarkLike]) -> SyncResult:
        """Drop every document for owner_id, then bulk index bookmarks.

        Steps run strictly in order and concurrent reindexes of the same
        owner are serialised. Re-running with the same input converges on
        the same document set.
        """
        try:
            filter_by = owner_clause(owner_id)
        except QueryValidationError as e:
            return SyncResult.failure("reindex", str(e))

        owned: List[BookmarkLike] = []
        foreign: List[ItemError] = []
        for bookmark in bookmarks:
            document = to_search_document(bookmark)
            if document["user_id"] != owner_id:
                foreign.append(ItemError(id=document["id"], error=f"Bookmark does not belong to owner {owner_id}"))
            else:
                owned.append(bookmark)

        lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        async with lock:
            self._reindexing.add(owner_id)
            try:
                try:
                    deleted = await self.client.delete_by_filter(self.collection, filter_by)
                except SearchEngineError as e:
                    logger.error("Failed to clear index for owner %s: %s", owner_id, e)
                    return SyncResult.failure("reindex", str(e))

                logger.info("Cleared %d documents for owner %s", deleted, owner_id)
                bulk = await self.index_bulk(owned)
            finally:
                self._reindexing.discard(owner_id)

        if bulk.error is not None:
            return SyncResult.failure("reindex", bulk.error)

        logger.info("Re-indexed %d bookmarks for owner %s", bulk.count, owner_id)
        return SyncResult.success("reindex", count=bulk.count, item_errors=foreign + bulk.item_errors)


def _collect_item_errors(documents: List[dict], results: List[dict]) -> List[ItemError]:
    errors = []
    for index, document in enumerate(documents):
        if index >= len(results):
            errors.append(ItemError(id=document["id"], error="No import result returned"))
            continue
        result = results[index]
        if not result.get("success", False):
            errors.append(ItemError(id=document["id"], error=str(result.get("error", "Unknown import error"))))
    return errors
