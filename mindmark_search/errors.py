"""Exceptions shared across the search sync and query layers."""
from typing import Optional


class MindMarkError(Exception):
    """Base class for all MindMark search errors."""


class ConfigurationError(MindMarkError):
    """Raised at startup when required configuration is missing or invalid."""


class QueryValidationError(MindMarkError, ValueError):
    """Raised when search options are malformed, before any network call."""


class BookmarkValidationError(MindMarkError, ValueError):
    """Raised when bookmark input does not satisfy the canonical record rules."""


class SearchEngineError(MindMarkError):
    """Raised when a call to the search engine fails.

    Attributes:
        status_code: HTTP status returned by the engine, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SearchUnavailableError(SearchEngineError):
    """Transient engine failure: timeout, connection error or 5xx."""


class SearchAuthenticationError(SearchEngineError):
    """The engine rejected our credentials (401/403)."""


class DocumentNotFoundError(SearchEngineError):
    """The requested document or collection does not exist (404)."""
