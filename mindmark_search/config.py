"""Configuration for the MindMark search service."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from mindmark_search.errors import ConfigurationError


DEFAULT_DB_PATH = Path.home() / ".mindmark" / "bookmarks.db"


@dataclass
class TypesenseConfig:
    """Connection settings for the Typesense search engine."""
    host: str = "localhost"
    port: int = 8108
    protocol: str = "http"
    api_key: Optional[str] = None
    collection: str = "bookmarks"

    # Timeouts (seconds). Every engine call is bounded by both.
    connection_timeout: float = 2.0
    request_timeout: float = 10.0

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> "TypesenseConfig":
        """Create config from environment variables."""
        return cls(
            host=os.environ.get("TYPESENSE_HOST", "localhost"),
            port=int(os.environ.get("TYPESENSE_PORT", "8108")),
            protocol=os.environ.get("TYPESENSE_PROTOCOL", "http"),
            api_key=os.environ.get("TYPESENSE_API_KEY") or None,
            collection=os.environ.get("TYPESENSE_COLLECTION", "bookmarks"),
            connection_timeout=float(os.environ.get("TYPESENSE_CONNECTION_TIMEOUT", "2.0")),
            request_timeout=float(os.environ.get("TYPESENSE_REQUEST_TIMEOUT", "10.0")),
        )


@dataclass
class SearchConfig:
    """Query-side behaviour: debounce, cache and paging defaults."""
    debounce_ms: int = 300
    cache_size: int = 50
    default_limit: int = 20
    max_facet_values: int = 10
    suggestion_min_chars: int = 2
    max_suggestions: int = 5

    @classmethod
    def from_env(cls) -> "SearchConfig":
        """Create config from environment variables."""
        return cls(
            debounce_ms=int(os.environ.get("MINDMARK_SEARCH_DEBOUNCE_MS", "300")),
            cache_size=int(os.environ.get("MINDMARK_SEARCH_CACHE_SIZE", "50")),
            default_limit=int(os.environ.get("MINDMARK_SEARCH_LIMIT", "20")),
        )


@dataclass
class EnrichmentConfig:
    """Configuration for page content fetching."""
    request_timeout: float = 30.0  # Seconds
    max_content_length: int = 50000  # Max chars to extract from page

    @classmethod
    def from_env(cls) -> "EnrichmentConfig":
        """Create config from environment variables."""
        return cls(
            request_timeout=float(os.environ.get("MINDMARK_FETCH_TIMEOUT", "30.0")),
            max_content_length=int(os.environ.get("MINDMARK_MAX_CONTENT", "50000")),
        )


@dataclass
class Config:
    """Main configuration for the MindMark search service."""
    typesense: TypesenseConfig = field(default_factory=TypesenseConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    db_path: Optional[Path] = None  # None = use default
    owner_id: str = "local"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        db_path_str = os.environ.get("MINDMARK_DB")
        db_path = Path(db_path_str) if db_path_str else None

        return cls(
            typesense=TypesenseConfig.from_env(),
            search=SearchConfig.from_env(),
            enrichment=EnrichmentConfig.from_env(),
            db_path=db_path,
            owner_id=os.environ.get("MINDMARK_OWNER_ID", "local"),
            log_level=os.environ.get("MINDMARK_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> "Config":
        """Check required settings.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If a required setting is missing or invalid
        """
        if not self.typesense.api_key:
            raise ConfigurationError("TYPESENSE_API_KEY environment variable is required")
        if self.typesense.protocol not in ("http", "https"):
            raise ConfigurationError(
                f"TYPESENSE_PROTOCOL must be http or https, got {self.typesense.protocol!r}"
            )
        if not self.owner_id:
            raise ConfigurationError("MINDMARK_OWNER_ID must not be empty")
        if self.search.cache_size < 1:
            raise ConfigurationError("MINDMARK_SEARCH_CACHE_SIZE must be at least 1")
        return self


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global config instance.

    Returns:
        Config loaded from environment
    """
    global _config

    if _config is None:
        _config = Config.from_env()

    return _config
