from __future__ import annotations

import logging
import os
import sys

from loguru import logger


def _env(name: str, default: str | None = None) -> str | None:
    val = os.environ.get(name)
    if val is None or val.strip() == "":
        return default
    return val


def _env_int(name: str, default: int) -> int:
    val = _env(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={val!r}, using {default}")
        return default


# Crawl
MAX_PAGES = _env_int("DOC_EXPLAINER_MAX_PAGES", 50)
FETCH_TIMEOUT_SECONDS = 10
USER_AGENT = "DocExplainerBot/1.0"
MIN_PAGE_TEXT_CHARS = 200
MIN_CRAWL_CONTENT_CHARS = 100
MAX_CONTENT_CHARS = 50_000
PRIORITY_LINKS_PER_PAGE = 20
OTHER_LINKS_PER_PAGE = 5

# Summarization / chat
CHUNK_SIZE = 15_000
MAX_SUMMARY_CHUNKS = 5
CHAT_CONTEXT_CHARS = 30_000
FILE_ANALYSIS_CHARS = 15_000
FILE_PREVIEW_CHARS = 2_000
LLM_TIMEOUT_SECONDS = _env_int("LLM_TIMEOUT_SECONDS", 45)

# Per-URL document cache
DOC_CACHE_TTL_SECONDS = _env_int("DOC_CACHE_TTL_SECONDS", 30 * 60)
DOC_CACHE_MAXSIZE = 256

# Conversations
DEFAULT_CONVERSATION_TITLE = "New Conversation"
TITLE_MAX_CHARS = 40
FILE_TITLE_MAX_CHARS = 30

DEFAULT_PROVIDER_ORDER = "gemini,groq,siliconflow"


class InterceptHandler(logging.Handler):
    """Routes stdlib logging records (uvicorn, httpx) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str | None = None) -> None:
    level = (level or _env("LOG_LEVEL", "INFO") or "INFO").upper()
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
    )
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
