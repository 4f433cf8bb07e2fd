from __future__ import annotations

import httpx
from loguru import logger

from doc_explainer.config import FETCH_TIMEOUT_SECONDS, USER_AGENT


_TEXTUAL_HINTS = ("html", "xml", "text/")


def build_client(timeout: float = FETCH_TIMEOUT_SECONDS) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )


def _is_textual(content_type: str) -> bool:
    if not content_type:
        return True
    content_type = content_type.lower()
    return any(hint in content_type for hint in _TEXTUAL_HINTS)


async def fetch_page(client: httpx.AsyncClient, url: str) -> str | None:
    """
    Single GET. Returns the page text, or None when the page should be skipped:
    malformed URL, network error or timeout, non-2xx status, binary content type.
    """
    try:
        r = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Fetch failed for {url}: {e!r}")
        return None

    if not r.is_success:
        logger.debug(f"Skipping {url}: HTTP {r.status_code}")
        return None
    if not _is_textual(r.headers.get("content-type", "")):
        logger.debug(f"Skipping {url}: content-type {r.headers.get('content-type')}")
        return None
    return r.text
