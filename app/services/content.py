from __future__ import annotations

import logging
import time
import warnings

import httpx
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from app.services.common import host_from_url, is_valid_http_url
from app.services.errors import InvalidURL


logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; Smartmark/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

DEFAULT_TITLE_TIMEOUT = 5.0
DEFAULT_TITLE_MAX_BYTES = 500000


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def fetch_html(
    url: str,
    timeout: float,
    max_bytes: int,
    transport: httpx.BaseTransport | None = None,
) -> tuple[str, int]:
    # httpx applies timeout per read; the deadline bounds the whole fetch.
    deadline = time.monotonic() + timeout
    with httpx.Client(
        follow_redirects=True,
        timeout=timeout,
        headers=DEFAULT_HEADERS,
        transport=transport,
    ) as client:
        with client.stream("GET", url) as response:
            status_code = response.status_code
            chunks = []
            total = 0
            for chunk in response.iter_bytes():
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout(
                        f"Title fetch exceeded {timeout}s", request=response.request
                    )
                total += len(chunk)
                if total > max_bytes:
                    break
                chunks.append(chunk)
            data = b"".join(chunks)
            encoding = response.encoding or "utf-8"
            return data.decode(encoding, errors="ignore"), status_code


def extract_title(html: str) -> str | None:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        soup = BeautifulSoup(html, "lxml")
    tag = soup.find("title")
    if tag is None:
        return None
    title = tag.get_text().strip()
    return title or None


def resolve_title(
    url: str,
    timeout: float = DEFAULT_TITLE_TIMEOUT,
    max_bytes: int = DEFAULT_TITLE_MAX_BYTES,
) -> str:
    """Return a display title for ``url``, falling back to its host name.

    Never fails because of the remote site: network errors, timeouts,
    non-success responses and pages without a title all degrade to the host.
    Only input that is not an http(s) URL is rejected.
    """
    url = (url or "").strip()
    if not is_valid_http_url(url):
        raise InvalidURL("Invalid URL")

    fallback = host_from_url(url)
    try:
        html, status_code = fetch_html(url, timeout=timeout, max_bytes=max_bytes)
    except (httpx.HTTPError, httpx.InvalidURL, LookupError, UnicodeError) as exc:
        logger.warning("Title fetch failed for %s: %s", url, _normalize_error(exc))
        return fallback

    if not 200 <= status_code < 300:
        logger.warning("Title fetch for %s returned HTTP %s", url, status_code)
        return fallback

    try:
        title = extract_title(html)
    except Exception as exc:
        logger.warning("Title parse failed for %s: %s", url, _normalize_error(exc))
        return fallback
    return title or fallback
