from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass, field

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from doc_explainer.config import (
    MAX_CONTENT_CHARS,
    MAX_PAGES,
    MIN_PAGE_TEXT_CHARS,
    OTHER_LINKS_PER_PAGE,
    PRIORITY_LINKS_PER_PAGE,
)
from doc_explainer.fetcher import build_client, fetch_page
from doc_explainer.links import extract_links, is_priority_link, normalize_url

NOISE_SELECTORS = "script, style, noscript, nav, header, footer, aside, .sidebar, .nav, .menu"
# First match wins, in this order.
CONTENT_SELECTORS = ("main", "article", ".content", ".documentation", ".docs", "body")


@dataclass
class CrawlResult:
    start_url: str
    content: str = ""
    visited: list[str] = field(default_factory=list)
    pages_with_content: int = 0


def extract_page_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.select(NOISE_SELECTORS):
        tag.decompose()

    container = None
    for selector in CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    if container is None:
        container = soup

    text = container.get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def _page_block(url: str, text: str) -> str:
    return f"\n\n### Page: {url}\n{text}\n"


async def crawl(
    start_url: str,
    max_pages: int = MAX_PAGES,
    *,
    client: httpx.AsyncClient | None = None,
    max_chars: int = MAX_CONTENT_CHARS,
) -> CrawlResult:
    """
    Breadth-first crawl from start_url, staying on its origin.

    Pages are marked visited before they are fetched, so a page that fails is
    never retried within the run. Documentation-looking links from each page are
    queued ahead of the others, with a bounded fan-out per page.
    """
    result = CrawlResult(start_url=start_url)
    # Same identity as discovered links, so the seed is not fetched twice.
    queue: deque[str] = deque([normalize_url(start_url) or start_url])
    visited: set[str] = set()
    blocks: list[str] = []
    size = 0

    own_client = client is None
    if own_client:
        client = build_client()

    try:
        while queue and len(visited) < max_pages:
            url = queue.popleft()
            if url in visited:
                continue
            visited.add(url)
            result.visited.append(url)

            html = await fetch_page(client, url)
            if html is None:
                continue

            text = extract_page_text(html)
            if len(text) > MIN_PAGE_TEXT_CHARS and size < max_chars:
                block = _page_block(url, text)
                blocks.append(block)
                size += len(block)
                result.pages_with_content += 1

            new_links = [link for link in extract_links(html, url) if link not in visited]
            priority = [link for link in new_links if is_priority_link(link)]
            other = [link for link in new_links if not is_priority_link(link)]
            queue.extend(priority[:PRIORITY_LINKS_PER_PAGE])
            queue.extend(other[:OTHER_LINKS_PER_PAGE])
    finally:
        if own_client:
            await client.aclose()

    result.content = "".join(blocks)[:max_chars]
    logger.info(
        f"Crawled {start_url}: visited={len(result.visited)} "
        f"pages_with_content={result.pages_with_content} chars={len(result.content)}"
    )
    return result
