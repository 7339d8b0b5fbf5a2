"""Page content extraction for bookmark enrichment.

The server only fetches and extracts text. Summaries and tags are written
by the calling agent, which sends them back through store_bookmark_metadata;
that update flows into the search index like any other bookmark edit.
"""
import logging
from typing import Optional

import httpx
import trafilatura

from mindmark_search.config import EnrichmentConfig, get_config

logger = logging.getLogger(__name__)

USER_AGENT = "MindMark/1.0 (bookmark enrichment)"
TRUNCATION_MARKER = "\n\n[content truncated]"


async def fetch_page_content(url: str, config: Optional[EnrichmentConfig] = None) -> Optional[str]:
    """Fetch a page and extract its main text.

    Args:
        url: Page to fetch
        config: Enrichment settings (defaults to the global config)

    Returns:
        Extracted text, truncated to max_content_length, or None on failure
    """
    if config is None:
        config = get_config().enrichment

    try:
        async with httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("HTTP error fetching %s: %s", url, e)
        return None

    content = trafilatura.extract(
        response.text,
        include_comments=False,
        include_tables=True,
        no_fallback=False,
    )
    if not content:
        logger.info("No extractable content at %s", url)
        return None

    if len(content) > config.max_content_length:
        content = content[:config.max_content_length] + TRUNCATION_MARKER
    return content
