from __future__ import annotations

import re
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

_SKIPPED_PREFIXES = ("#", "mailto:", "tel:")
_DEFAULT_PORTS = {"http": 80, "https": 443}
_PRIORITY_PATH = re.compile(r"/(docs?|guide|tutorial|api|reference|getting-started)(/|$)", re.IGNORECASE)


def _origin(url: str) -> str | None:
    try:
        u = urlsplit(url)
        port = u.port
    except ValueError:
        return None
    scheme = (u.scheme or "").lower()
    host = (u.hostname or "").lower()
    if scheme not in _DEFAULT_PORTS or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def normalize_url(url: str) -> str | None:
    """origin + path; query string and fragment dropped."""
    origin = _origin(url)
    if origin is None:
        return None
    path = urlsplit(url).path or "/"
    return origin + path


def extract_links(html: str, base_url: str) -> list[str]:
    """
    Same-origin links found in anchor hrefs, normalized to origin + path.
    Order of first appearance is kept; duplicates are dropped.
    """
    base_origin = _origin(base_url)
    if base_origin is None:
        return []

    soup = BeautifulSoup(html, "html.parser")
    links: dict[str, None] = {}
    for a in soup.find_all("a", href=True):
        href = (a.get("href") or "").strip()
        if not href or href.lower().startswith(_SKIPPED_PREFIXES):
            continue
        try:
            resolved = urljoin(base_url, href)
        except ValueError:
            continue
        if _origin(resolved) != base_origin:
            continue
        normalized = normalize_url(resolved)
        if normalized:
            links.setdefault(normalized, None)
    return list(links)


def is_priority_link(url: str) -> bool:
    return bool(_PRIORITY_PATH.search(urlsplit(url).path or ""))
