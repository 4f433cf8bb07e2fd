from __future__ import annotations

import time
from typing import Callable

from cachetools import TTLCache

from doc_explainer.config import DOC_CACHE_MAXSIZE, DOC_CACHE_TTL_SECONDS


class DocumentCache:
    """Short-lived crawled document text keyed by source URL; expiry checked on read."""

    def __init__(
        self,
        *,
        maxsize: int = DOC_CACHE_MAXSIZE,
        ttl_seconds: float = DOC_CACHE_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[str, str] = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)

    def get(self, key: str) -> str | None:
        return self._cache.get(key)

    def put(self, key: str, content: str) -> None:
        if key and content:
            self._cache[key] = content

    def __contains__(self, key: str) -> bool:
        return key in self._cache
