"""Shared fixtures for tests."""
import json
import re
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from mindmark_search.config import TypesenseConfig
from mindmark_search.errors import DocumentNotFoundError
from mindmark_search.models import Bookmark
from mindmark_search.store import BookmarkStore


SAMPLE_CHROME_BOOKMARKS = {
    "checksum": "test",
    "roots": {
        "bookmark_bar": {
            "children": [
                {
                    "id": "1",
                    "name": "Python Docs",
                    "type": "url",
                    "url": "https://docs.python.org"
                },
                {
                    "id": "2",
                    "name": "Work",
                    "type": "folder",
                    "children": [
                        {
                            "id": "3",
                            "name": "Jira Board",
                            "type": "url",
                            "url": "https://jira.example.com/board"
                        },
                        {
                            "id": "4",
                            "name": "Settings",
                            "type": "url",
                            "url": "chrome://settings"
                        }
                    ]
                },
                {
                    "id": "5",
                    "name": "Tutorials",
                    "type": "folder",
                    "children": [
                        {
                            "id": "6",
                            "name": "SQLite Guide",
                            "type": "url",
                            "url": "https://sqlite.org/guide"
                        }
                    ]
                }
            ],
            "id": "0",
            "name": "Bookmarks Bar",
            "type": "folder"
        },
        "other": {
            "children": [
                {
                    "id": "7",
                    "name": "Stack Overflow",
                    "type": "url",
                    "url": "https://stackoverflow.com"
                }
            ],
            "id": "100",
            "name": "Other Bookmarks",
            "type": "folder"
        },
        "synced": {
            "children": [],
            "id": "200",
            "name": "Mobile Bookmarks",
            "type": "folder"
        }
    },
    "version": 1
}


@pytest.fixture
def sample_chrome_path(tmp_path):
    """Create a temporary Chrome Bookmarks file with sample data."""
    bookmarks_file = tmp_path / "Bookmarks"
    bookmarks_file.write_text(json.dumps(SAMPLE_CHROME_BOOKMARKS, indent=3))
    return bookmarks_file


@pytest.fixture
def db_path(tmp_path):
    """Return path for a temporary bookmark database."""
    return tmp_path / "test_bookmarks.db"


@pytest_asyncio.fixture
async def store(db_path):
    """Create and initialize a test bookmark store."""
    s = BookmarkStore(db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def typesense_config():
    return TypesenseConfig(host="search.test", port=8108, api_key="test-key")


def make_bookmark(bookmark_id: str = "b1", user_id: str = "u1", **overrides: Any) -> Bookmark:
    values = {
        "id": bookmark_id,
        "user_id": user_id,
        "url": f"https://example.com/{bookmark_id}",
        "title": f"Bookmark {bookmark_id}",
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:00:00Z",
    }
    values.update(overrides)
    return Bookmark(**values)


@pytest.fixture
def bookmark_factory():
    return make_bookmark


# ============================================================================
# In-memory stand-in for TypesenseClient
# ============================================================================

_OWNER_FILTER = re.compile(r"^user_id:=`?([^`&]+?)`?(?:\s*&&|$)")


def _owner_from_filter(filter_by: str) -> Optional[str]:
    match = _OWNER_FILTER.match(filter_by or "")
    return match.group(1) if match else None


class FakeTypesenseClient:
    """Implements the TypesenseClient surface over dicts.

    Set failures[op] to an exception to make that operation raise, and
    import_errors[doc_id] to make a single bulk-import line fail.
    """

    def __init__(self):
        self.schemas: Dict[str, Dict[str, Any]] = {}
        self.documents: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.failures: Dict[str, Exception] = {}
        self.import_errors: Dict[str, str] = {}
        self.search_response: Optional[Dict[str, Any]] = None
        self.calls: List[str] = []
        self.search_calls: List[Dict[str, Any]] = []
        self.closed = False

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if op in self.failures:
            raise self.failures[op]

    def docs(self, collection: str = "bookmarks") -> Dict[str, Dict[str, Any]]:
        return self.documents.setdefault(collection, {})

    async def aclose(self) -> None:
        self.closed = True

    async def health(self) -> Dict[str, Any]:
        self._check("health")
        return {"ok": True}

    async def retrieve_collection(self, name: str) -> Dict[str, Any]:
        self._check("retrieve_collection")
        if name not in self.schemas:
            raise DocumentNotFoundError(f"Collection {name} not found", status_code=404)
        return self.schemas[name]

    async def create_collection(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        self._check("create_collection")
        self.schemas[schema["name"]] = schema
        return schema

    async def upsert_document(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        self._check("upsert_document")
        self.docs(collection)[document["id"]] = dict(document)
        return document

    async def delete_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        self._check("delete_document")
        docs = self.docs(collection)
        if document_id not in docs:
            raise DocumentNotFoundError(f"Document {document_id} not found", status_code=404)
        return docs.pop(document_id)

    async def delete_by_filter(self, collection: str, filter_by: str) -> int:
        self._check("delete_by_filter")
        owner = _owner_from_filter(filter_by)
        docs = self.docs(collection)
        doomed = [doc_id for doc_id, doc in docs.items() if doc["user_id"] == owner]
        for doc_id in doomed:
            del docs[doc_id]
        return len(doomed)

    async def import_documents(self, collection: str, documents: List[Dict[str, Any]], action: str = "upsert") -> List[Dict[str, Any]]:
        self._check("import_documents")
        results = []
        for document in documents:
            if document["id"] in self.import_errors:
                results.append({"success": False, "error": self.import_errors[document["id"]]})
            else:
                self.docs(collection)[document["id"]] = dict(document)
                results.append({"success": True})
        return results

    async def search(self, collection: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self._check("search")
        self.search_calls.append(dict(params))
        if self.search_response is not None:
            return self.search_response

        owner = _owner_from_filter(params.get("filter_by", ""))
        needle = params.get("q", "*").casefold()
        hits = []
        for doc in self.docs(collection).values():
            if doc["user_id"] != owner:
                continue
            haystack = " ".join([doc["title"], doc["description"], doc["url"]]).casefold()
            if needle != "*" and needle not in haystack:
                continue
            hits.append({"document": dict(doc), "text_match": 100})
        return {"found": len(hits), "hits": hits, "search_time_ms": 1, "facet_counts": []}


@pytest.fixture
def fake_client():
    return FakeTypesenseClient()
