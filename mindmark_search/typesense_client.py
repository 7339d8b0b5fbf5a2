"""Async HTTP client for the Typesense search engine.

Every call is bounded by a connect timeout and a request timeout, and every
failure is translated into the SearchEngineError hierarchy so callers only
need to handle one family of exceptions.
"""
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from mindmark_search.config import TypesenseConfig
from mindmark_search.errors import (
    DocumentNotFoundError,
    SearchAuthenticationError,
    SearchEngineError,
    SearchUnavailableError,
)
from mindmark_search.schema import bookmark_schema

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-TYPESENSE-API-KEY"


class TypesenseClient:
    """Thin async wrapper over the Typesense REST API.

    Constructed explicitly and passed to the services that need it; there is
    no module-level instance.
    """

    def __init__(self, config: TypesenseConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={API_KEY_HEADER: config.api_key or ""},
            timeout=httpx.Timeout(config.request_timeout, connect=config.connection_timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "TypesenseClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise SearchUnavailableError(f"Typesense request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            raise SearchUnavailableError(f"Could not reach Typesense at {self.config.base_url}: {e}") from e

        _raise_for_status(response)
        return response

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise SearchEngineError(
                f"Typesense returned invalid JSON for {method} {path}",
                status_code=response.status_code,
            ) from e

    # ------------------------------------------------------------------
    # Cluster and collections
    # ------------------------------------------------------------------

    async def health(self) -> Dict[str, Any]:
        return await self._request_json("GET", "/health")

    async def retrieve_collection(self, name: str) -> Dict[str, Any]:
        return await self._request_json("GET", f"/collections/{quote(name, safe='')}")

    async def create_collection(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request_json("POST", "/collections", json=schema)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _documents_path(self, collection: str) -> str:
        return f"/collections/{quote(collection, safe='')}/documents"

    async def upsert_document(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        """Create the document, or replace it entirely if the id exists."""
        return await self._request_json(
            "POST",
            self._documents_path(collection),
            params={"action": "upsert"},
            json=document,
        )

    async def delete_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        """Delete a document by id.

        Raises:
            DocumentNotFoundError: If no document has that id
        """
        return await self._request_json(
            "DELETE",
            f"{self._documents_path(collection)}/{quote(document_id, safe='')}",
        )

    async def delete_by_filter(self, collection: str, filter_by: str) -> int:
        """Delete every document matching filter_by.

        Returns:
            Number of documents deleted
        """
        data = await self._request_json(
            "DELETE",
            self._documents_path(collection),
            params={"filter_by": filter_by},
        )
        return int(data.get("num_deleted", 0)) if isinstance(data, dict) else 0

    async def import_documents(
        self,
        collection: str,
        documents: List[Dict[str, Any]],
        action: str = "upsert",
    ) -> List[Dict[str, Any]]:
        """Bulk import documents in one round trip.

        Typesense answers 200 even when individual lines fail, with one JSON
        result per input line.

        Returns:
            One result dict per document, in input order
        """
        body = "\n".join(json.dumps(doc) for doc in documents)
        response = await self._request(
            "POST",
            f"{self._documents_path(collection)}/import",
            params={"action": action},
            content=body.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )

        results = []
        for line in response.text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                results.append(json.loads(line))
            except json.JSONDecodeError:
                results.append({"success": False, "error": f"Unparsable import result: {line[:200]}"})
        return results

    async def search(self, collection: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request_json(
            "GET",
            f"{self._documents_path(collection)}/search",
            params=_encode_params(params),
        )


def _encode_params(params: Dict[str, Any]) -> Dict[str, str]:
    """Typesense expects lowercase booleans in query strings."""
    encoded = {}
    for key, value in params.items():
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason_phrase


def _raise_for_status(response: httpx.Response) -> None:
    """Translate an HTTP error status into the matching SearchEngineError."""
    status = response.status_code
    if status < 400:
        return

    message = f"Typesense error {status}: {_error_message(response)}"
    if status in (401, 403):
        raise SearchAuthenticationError(message, status_code=status)
    if status == 404:
        raise DocumentNotFoundError(message, status_code=status)
    if status >= 500 or status == 429:
        raise SearchUnavailableError(message, status_code=status)
    raise SearchEngineError(message, status_code=status)


# ============================================================================
# Collection lifecycle
# ============================================================================

async def ensure_collection(client: TypesenseClient, name: str) -> bool:
    """Create the bookmarks collection if it does not exist yet.

    Args:
        client: Engine client
        name: Collection name

    Returns:
        True if the collection was created, False if it already existed

    Raises:
        SearchEngineError: If the engine cannot be queried or creation fails
    """
    try:
        await client.retrieve_collection(name)
        logger.info("Collection %r already exists", name)
        return False
    except DocumentNotFoundError:
        pass

    await client.create_collection(bookmark_schema(name))
    logger.info("Collection %r created", name)
    return True


async def check_health(client: TypesenseClient) -> Dict[str, Any]:
    """Liveness check. Never raises.

    Returns:
        {"healthy": True, "status": ...} or {"healthy": False, "error": ...}
    """
    try:
        status = await client.health()
    except SearchEngineError as e:
        logger.warning("Typesense health check failed: %s", e)
        return {"healthy": False, "error": str(e)}

    healthy = bool(status.get("ok")) if isinstance(status, dict) else False
    return {"healthy": healthy, "status": status}
