"""
Offline snapshot support: rewriting a page's resource URLs and mirroring the bytes.

`extract_and_rewrite` is a pure BeautifulSoup pass run when a snapshot is stored.
`mirror_media` downloads the referenced resources afterwards (as a background
task) and stores them in the content-addressed blob store. A failed download is
logged and skipped, it never affects the stored snapshot.
"""
import ipaddress
import logging
import socket
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import quote, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from services import media_service

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; Bookmarks/1.0)"
MEDIA_PREFIX = "/media"

# (tag, attribute) pairs whose value is a single URL
_URL_ATTRIBUTES = (("img", "src"), ("video", "src"), ("source", "src"))
_SRCSET_TAGS = ["img", "source"]


class SSRFBlockedError(Exception):
    """Raised when a URL targets a private/internal network address."""

    pass


@dataclass
class RewrittenSnapshot:
    """A snapshot pointing at the local mirror, and the remote URLs it references."""

    html: str
    urls: list[str]


@dataclass
class FetchedMedia:
    """Bytes and content type of a downloaded resource."""

    content: bytes
    mime: str


def media_path(bookmark_id: int, url: str) -> str:
    """Local mirror path of a bookmark's remote resource."""
    return f"{MEDIA_PREFIX}/{bookmark_id}/{quote(url, safe='')}"


def _resolve(raw: str, page_url: str) -> str | None:
    """Absolute http(s) URL for a reference on the page, None for anything else."""
    raw = raw.strip()
    if not raw or raw.startswith("data:"):
        return None
    try:
        absolute = urljoin(page_url, raw)
        scheme = urlparse(absolute).scheme
    except ValueError:
        return None
    if scheme not in ("http", "https"):
        return None
    return absolute


def extract_and_rewrite(html: str, page_url: str, bookmark_id: int) -> RewrittenSnapshot:
    """
    Rewrite a snapshot's media and stylesheet references to the local mirror.

    Handles `img[src]`, `video[src]`, `source[src]`, `img[srcset]`,
    `source[srcset]` and `link[rel=stylesheet][href]`. Relative references are
    resolved against the page URL, `data:` URLs are left alone.

    Returns:
        The rewritten HTML and the distinct absolute URLs, in document order.
    """
    soup = BeautifulSoup(html, "html.parser")
    urls: list[str] = []
    seen: set[str] = set()

    def localize(raw: str) -> str | None:
        absolute = _resolve(raw, page_url)
        if absolute is None:
            return None
        if absolute not in seen:
            seen.add(absolute)
            urls.append(absolute)
        return media_path(bookmark_id, absolute)

    for tag_name, attribute in _URL_ATTRIBUTES:
        for tag in soup.find_all(tag_name, attrs={attribute: True}):
            local = localize(tag[attribute])
            if local is not None:
                tag[attribute] = local

    for tag in soup.find_all(_SRCSET_TAGS, attrs={"srcset": True}):
        candidates = []
        for candidate in tag["srcset"].split(","):
            parts = candidate.strip().split(None, 1)
            if not parts:
                continue
            local = localize(parts[0])
            if local is not None:
                parts[0] = local
            candidates.append(" ".join(parts))
        tag["srcset"] = ", ".join(candidates)

    for link in soup.find_all("link", attrs={"href": True}):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "stylesheet" not in (r.lower() for r in rel):
            continue
        local = localize(link["href"])
        if local is not None:
            link["href"] = local

    return RewrittenSnapshot(html=str(soup), urls=urls)


def is_private_ip(ip_str: str) -> bool:
    """
    Check if an IP address is private, loopback, or otherwise internal.

    Unparseable addresses count as private.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def validate_url_not_private(url: str) -> None:
    """
    Validate that a URL does not target a private/internal network.

    The hostname is resolved so a public name pointing at an internal address is
    blocked too.

    Raises:
        SSRFBlockedError: If the URL targets a private network.
        ValueError: If the URL is malformed or its host does not resolve.
    """
    hostname = urlparse(url).hostname
    if not hostname:
        raise ValueError(f"Invalid URL (no hostname): {url}")
    if hostname.lower() in ("localhost", "localhost.localdomain"):
        raise SSRFBlockedError(f"Blocked request to localhost: {url}")

    try:
        addrinfo = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ValueError(f"Could not resolve hostname: {hostname}") from e
    for _family, _, _, _, sockaddr in addrinfo:
        if is_private_ip(sockaddr[0]):
            raise SSRFBlockedError(
                f"Blocked request to private/internal address: {url} resolves to {sockaddr[0]}",
            )


async def fetch_media(client: httpx.AsyncClient, url: str) -> FetchedMedia | None:
    """
    Download one resource. Returns None (after logging) on any failure.

    Both the requested URL and the final URL after redirects must not target a
    private network. Non-2xx responses and responses without a content type are
    skipped.
    """
    try:
        validate_url_not_private(url)
    except (SSRFBlockedError, ValueError) as e:
        logger.warning("Skipping media %s: %s", url, e)
        return None

    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        logger.warning("Failed to fetch media %s: %s", url, e)
        return None

    # Redirects are followed, so the final URL is checked too
    final_url = str(response.url)
    try:
        validate_url_not_private(final_url)
    except (SSRFBlockedError, ValueError) as e:
        logger.warning("Skipping media %s: redirect blocked: %s", url, e)
        return None

    if not response.is_success:
        logger.warning("Failed to fetch media %s: HTTP %s", url, response.status_code)
        return None
    mime = response.headers.get("content-type", "")
    if not mime:
        logger.warning("Skipping media %s: no content type", url)
        return None
    return FetchedMedia(content=response.content, mime=mime)


async def mirror_media(
    session_factory: async_sessionmaker[AsyncSession],
    bookmark_id: int,
    urls: Iterable[str],
    timeout: float | None = None,  # noqa: ASYNC109
) -> int:
    """
    Download and store every not-yet-mirrored URL of a bookmark.

    Runs after the snapshot's request has committed. Each stored resource gets
    its own short transaction, and no transaction is open while downloading.

    Returns:
        Number of resources stored.
    """
    if timeout is None:
        timeout = get_settings().media_fetch_timeout

    mirrored = 0
    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
        http2=True,
    ) as client:
        for url in urls:
            async with session_factory() as db:
                already = await media_service.media_exists(db, bookmark_id, url)
            if already:
                logger.debug("Media %s of bookmark %s already mirrored", url, bookmark_id)
                continue

            fetched = await fetch_media(client, url)
            if fetched is None:
                continue

            async with session_factory() as db, db.begin():
                sha256 = await media_service.add_blob(db, fetched.content, fetched.mime)
                await media_service.add_media(db, bookmark_id, url, sha256)
            mirrored += 1

    logger.info("Mirrored %d media resources for bookmark %s", mirrored, bookmark_id)
    return mirrored
