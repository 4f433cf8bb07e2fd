from __future__ import annotations

import json
import re
from typing import Protocol

from loguru import logger

from doc_explainer.config import CHUNK_SIZE, MAX_SUMMARY_CHUNKS
from doc_explainer.errors import LLMError
from doc_explainer.prompts import CHUNK_SUMMARY_SYSTEM, INSIGHTS_SYSTEM, chunk_prompt, insights_prompt
from doc_explainer.schemas import Insights, Mode

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


class Completer(Protocol):
    async def complete(self, messages: list[dict[str, str]], *, temperature: float = ..., max_tokens: int = ...) -> str: ...


def fallback_insights() -> Insights:
    return Insights(
        summary="Documentation loaded and analyzed successfully.",
        keyPoints=["Crawled sections of documentation", "Ready to answer questions"],
        suggestedQuestions=["What are the main features?", "How do I get started?"],
    )


def chunk_text(text: str, size: int = CHUNK_SIZE) -> list[str]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [text[i : i + size] for i in range(0, len(text), size)]


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def parse_insights(text: str) -> Insights:
    try:
        return Insights.model_validate(json.loads(strip_code_fences(text)))
    except ValueError as e:
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors.
        logger.warning(f"Could not parse insights JSON, using fallback: {e}")
        return fallback_insights()


async def summarize_chunks(chunks: list[str], mode: Mode, llm: Completer) -> list[str]:
    summaries: list[str] = []
    total = len(chunks)
    for i, chunk in enumerate(chunks[:MAX_SUMMARY_CHUNKS]):
        messages = [
            {"role": "system", "content": CHUNK_SUMMARY_SYSTEM[mode]},
            {"role": "user", "content": chunk_prompt(chunk, i, total)},
        ]
        try:
            summary = await llm.complete(messages, temperature=0.5, max_tokens=800)
        except LLMError as e:
            logger.warning(f"Chunk {i + 1}/{total} summary failed, skipping: {e}")
            continue
        if summary.strip():
            summaries.append(summary)
    return summaries


async def summarize_document(text: str, mode: Mode, llm: Completer) -> Insights:
    """
    Chunk the document, summarize the leading chunks one at a time, then ask for
    one structured Insights object over the chunk summaries.

    Always returns Insights: failed chunks are dropped and a failed or unparsable
    aggregation falls back to a canned value.
    """
    chunks = chunk_text(text)
    summaries = await summarize_chunks(chunks, mode, llm)
    logger.info(f"Summarized {len(summaries)}/{min(len(chunks), MAX_SUMMARY_CHUNKS)} chunks ({len(chunks)} total)")

    messages = [
        {"role": "system", "content": INSIGHTS_SYSTEM[mode]},
        {"role": "user", "content": insights_prompt(summaries)},
    ]
    try:
        raw = await llm.complete(messages, temperature=0.7, max_tokens=1500)
    except LLMError as e:
        logger.error(f"Insights aggregation failed, using fallback: {e}")
        return fallback_insights()
    return parse_insights(raw)
