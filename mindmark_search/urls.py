"""URL validation, normalisation and content-type guessing for new bookmarks."""
import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mindmark_search.errors import BookmarkValidationError


_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*)://")

VIDEO_HOSTS = ("youtube.com", "youtu.be", "vimeo.com", "twitch.tv")
DEVELOPMENT_HOSTS = (
    "github.com",
    "gitlab.com",
    "bitbucket.org",
    "stackoverflow.com",
    "stackexchange.com",
    "developer.mozilla.org",
    "docs.microsoft.com",
    "aws.amazon.com",
    "cloud.google.com",
    "npmjs.com",
    "pypi.org",
)
DOCUMENT_EXTENSIONS = (".pdf", ".doc", ".docx", ".ppt", ".pptx", ".xls", ".xlsx")


def validate_and_normalize_url(url: str) -> str:
    """Validate a user-supplied URL and return its normalised form.

    Adds https:// when no scheme is given, drops the fragment and sorts
    query parameters so the same page always maps to the same string.

    Raises:
        BookmarkValidationError: If the URL is empty, not http(s) or has no host
    """
    text = (url or "").strip()
    if not text:
        raise BookmarkValidationError("URL cannot be empty")

    match = _SCHEME.match(text)
    if match:
        if match.group(1).lower() not in ("http", "https"):
            raise BookmarkValidationError("Only HTTP and HTTPS URLs are supported")
    else:
        text = f"https://{text}"

    try:
        parts = urlsplit(text)
    except ValueError as e:
        raise BookmarkValidationError(f"Invalid URL: {e}") from e

    if not parts.hostname:
        raise BookmarkValidationError("Invalid hostname")

    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def extract_domain(url: str) -> Optional[str]:
    """Hostname without a leading www., or None if the URL cannot be parsed."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname[4:] if hostname.startswith("www.") else hostname


def _host_matches(hostname: str, domains: tuple) -> bool:
    return any(hostname == d or hostname.endswith(f".{d}") for d in domains)


def suggest_content_type(url: str) -> str:
    """Guess a content type from the URL alone."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "webpage"
    hostname = extract_domain(url) or ""
    path = parts.path.lower()

    if _host_matches(hostname, VIDEO_HOSTS):
        return "video"
    if _host_matches(hostname, DEVELOPMENT_HOSTS) or hostname.startswith("docs.") or "/docs/" in path:
        return "reference"
    if hostname.startswith("app.") or "/app/" in path or "/tool/" in path:
        return "tool"
    if path.endswith(DOCUMENT_EXTENSIONS):
        return "document"
    if any(segment in path for segment in ("/blog/", "/article/", "/post/")):
        return "article"
    return "webpage"
