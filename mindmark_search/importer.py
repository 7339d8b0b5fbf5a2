"""Import bookmarks from a Chrome profile into the bookmark store."""
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from mindmark_search.errors import BookmarkValidationError
from mindmark_search.models import MAX_TITLE_LENGTH
from mindmark_search.store import BookmarkStore
from mindmark_search.urls import validate_and_normalize_url

logger = logging.getLogger(__name__)

CHROME_ROOTS = ("bookmark_bar", "other", "synced")


def get_chrome_bookmarks_path(profile: str = "Default") -> Path:
    """Location of Chrome's Bookmarks file for this platform.

    Falls back to the Chromium location on Linux when Chrome's is missing.
    """
    home = Path.home()
    if os.name == "nt":
        return home / "AppData" / "Local" / "Google" / "Chrome" / "User Data" / profile / "Bookmarks"
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "Google" / "Chrome" / profile / "Bookmarks"
    if os.name == "posix":
        chrome_path = home / ".config" / "google-chrome" / profile / "Bookmarks"
        if not chrome_path.exists():
            chrome_path = home / ".config" / "chromium" / profile / "Bookmarks"
        return chrome_path
    raise OSError(f"Unsupported operating system: {os.name}")


def _walk(node: Dict[str, Any], folder: List[str], out: List[Dict[str, str]]) -> None:
    node_type = node.get("type")
    if node_type == "url":
        out.append({
            "url": node.get("url", ""),
            "title": node.get("name", ""),
            "folder": "/".join(folder),
        })
    elif node_type == "folder":
        path = folder + [node["name"]] if node.get("name") else folder
        for child in node.get("children", []):
            _walk(child, path, out)


def read_chrome_bookmarks(bookmarks_path: Optional[Path] = None) -> List[Dict[str, str]]:
    """Flatten a Chrome Bookmarks file.

    Args:
        bookmarks_path: Bookmarks file; defaults to the current user's Chrome profile

    Returns:
        Records with url, title and folder (slash-separated path from the root)

    Raises:
        FileNotFoundError: If the file doesn't exist
        json.JSONDecodeError: If the file is malformed
    """
    if bookmarks_path is None:
        bookmarks_path = get_chrome_bookmarks_path()
    if not bookmarks_path.exists():
        raise FileNotFoundError(f"Bookmarks file not found at {bookmarks_path}")

    with open(bookmarks_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    records: List[Dict[str, str]] = []
    roots = data.get("roots", {})
    for root_name in CHROME_ROOTS:
        # Root folders ("Bookmarks bar", ...) are not collections.
        for child in roots.get(root_name, {}).get("children", []):
            _walk(child, [], records)
    return records


async def import_chrome_bookmarks(
    store: BookmarkStore,
    owner_id: str,
    bookmarks_path: Optional[Path] = None,
) -> Dict[str, int]:
    """Create store bookmarks from a Chrome profile.

    URLs that fail validation or already exist for the owner are skipped.
    The innermost folder name becomes the collection name. Callers should
    reindex the owner afterwards.

    Returns:
        {"imported": n, "skipped": m}
    """
    imported = 0
    skipped = 0

    for record in read_chrome_bookmarks(bookmarks_path):
        try:
            url = validate_and_normalize_url(record["url"])
        except BookmarkValidationError as e:
            logger.debug("Skipping %r: %s", record["url"], e)
            skipped += 1
            continue

        if await store.find_by_url(owner_id, url) is not None:
            skipped += 1
            continue

        folder = record["folder"].rsplit("/", 1)[-1] if record["folder"] else None
        try:
            await store.create_bookmark(
                owner_id,
                url,
                (record["title"] or url)[:MAX_TITLE_LENGTH],
                collection_name=folder,
            )
        except BookmarkValidationError as e:
            logger.debug("Skipping %r: %s", url, e)
            skipped += 1
            continue
        imported += 1

    logger.info("Imported %d Chrome bookmarks for %s (%d skipped)", imported, owner_id, skipped)
    return {"imported": imported, "skipped": skipped}
