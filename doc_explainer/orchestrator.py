from __future__ import annotations

import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Protocol

import httpx
from loguru import logger

from doc_explainer.assistant import AnalysisResult, FileExtraction, clean_history
from doc_explainer.config import FILE_TITLE_MAX_CHARS, TITLE_MAX_CHARS
from doc_explainer.conversations import Conversation, ConversationStore, make_message
from doc_explainer.errors import BackendError, DocExplainerError, TurnInFlightError
from doc_explainer.schemas import Insights, Mode

URL_PATTERN = re.compile(r"https?://[^\s]+")
_TRAILING_PUNCTUATION = ".,;:!?)]}'\""


class AssistantBackend(Protocol):
    async def analyze_docs(self, url: str, mode: Mode) -> AnalysisResult: ...

    async def chat(
        self, messages: Iterable[Any], mode: Mode, *, url: str | None = None, doc_content: str | None = None
    ) -> str: ...

    async def extract_file(self, filename: str, data: bytes, content_type: str, mode: Mode) -> FileExtraction: ...


class HttpBackend:
    """AssistantBackend talking to a running doc_explainer API."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def _post(self, path: str, **kwargs: Any) -> dict:
        try:
            r = await self.client.post(path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(f"{path}: {e!r}") from e
        try:
            data = r.json()
        except ValueError as e:
            raise BackendError(f"{path}: invalid JSON response", r.status_code) from e
        if not isinstance(data, dict):
            raise BackendError(f"{path}: expected a JSON object, got {type(data).__name__}", r.status_code)
        if r.status_code >= 400:
            raise BackendError(data.get("error") or f"{path}: HTTP {r.status_code}", r.status_code)
        return data

    async def analyze_docs(self, url: str, mode: Mode) -> AnalysisResult:
        data = await self._post("/scrape-docs", json={"url": url, "mode": mode.value})
        try:
            return AnalysisResult(insights=Insights.model_validate(data["insights"]), content=str(data["content"]))
        except (KeyError, ValueError) as e:
            raise BackendError(f"/scrape-docs: malformed response: {e}") from e

    async def chat(
        self, messages: Iterable[Any], mode: Mode, *, url: str | None = None, doc_content: str | None = None
    ) -> str:
        payload = {"url": url, "docContent": doc_content, "messages": clean_history(messages), "mode": mode.value}
        data = await self._post("/chat-docs", json=payload)
        if not isinstance(data.get("response"), str):
            raise BackendError("/chat-docs: malformed response")
        return data["response"]

    async def extract_file(self, filename: str, data: bytes, content_type: str, mode: Mode) -> FileExtraction:
        body = await self._post(
            "/extract-file",
            files={"file": (filename, data, content_type)},
            data={"mode": mode.value},
        )
        if not isinstance(body.get("text"), str):
            raise BackendError("/extract-file: malformed response")
        return FileExtraction(text=body["text"], full_content=body.get("fullContent"))


def truncate_title(text: str, limit: int = TITLE_MAX_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def find_url(text: str) -> str | None:
    match = URL_PATTERN.search(text)
    if not match:
        return None
    return match.group(0).rstrip(_TRAILING_PUNCTUATION) or None


def format_insights(url: str, insights: Insights) -> str:
    key_points = "\n".join(f"{i}. {p}" for i, p in enumerate(insights.keyPoints, start=1))
    questions = "\n".join(f"• {q}" for q in insights.suggestedQuestions)
    return (
        f"I've analyzed the documentation from **{url}**\n\n"
        f"**Summary:**\n{insights.summary}\n\n"
        f"**Key Points:**\n{key_points}\n\n"
        f"**Suggested Questions:**\n{questions}\n\n"
        "Feel free to ask me anything about this documentation!"
    )


class ChatTurnOrchestrator:
    """
    Runs one chat turn at a time per conversation against an AssistantBackend,
    writing every result back through the ConversationStore.

    A turn that fails on the backend leaves the user's message in place and
    appends nothing; the failure is logged.
    """

    def __init__(self, store: ConversationStore, backend: AssistantBackend) -> None:
        self.store = store
        self.backend = backend
        self._in_flight: set[str] = set()

    def is_busy(self, conversation_id: str) -> bool:
        return conversation_id in self._in_flight

    @asynccontextmanager
    async def _turn(self, conversation_id: str) -> AsyncIterator[None]:
        if conversation_id in self._in_flight:
            raise TurnInFlightError(f"A turn is already running for conversation {conversation_id}")
        self._in_flight.add(conversation_id)
        try:
            yield
        finally:
            self._in_flight.discard(conversation_id)

    def _mode(self, mode: Mode | str | None) -> Mode:
        return Mode(mode) if mode is not None else self.store.mode

    async def submit(self, conversation_id: str, text: str, mode: Mode | str | None = None) -> Conversation:
        text = text.strip()
        if not text:
            raise ValueError("Message is empty")
        mode = self._mode(mode)

        async with self._turn(conversation_id):
            conv = self.store.get(conversation_id)
            changes: dict[str, Any] = {"messages": [*conv.messages, make_message("user", text)]}
            if not conv.messages:
                changes["title"] = truncate_title(text)
            conv = self.store.update(conversation_id, **changes)

            url = find_url(text)
            if url and not conv.docContent:
                return await self._crawl_turn(conv, url, mode)
            return await self._answer(conv, mode)

    async def regenerate(self, conversation_id: str, mode: Mode | str | None = None) -> Conversation:
        mode = self._mode(mode)
        async with self._turn(conversation_id):
            conv = self.store.get(conversation_id)
            if not conv.messages or conv.messages[-1].role != "user":
                return conv
            return await self._answer(conv, mode)

    async def edit_message(
        self, conversation_id: str, message_id: str, new_content: str, mode: Mode | str | None = None
    ) -> Conversation:
        if self.is_busy(conversation_id):
            raise TurnInFlightError(f"A turn is already running for conversation {conversation_id}")
        conv = self.store.edit_message(conversation_id, message_id, new_content)
        if conv.messages[-1].role == "user":
            return await self.regenerate(conversation_id, mode)
        return conv

    async def attach_file(
        self,
        conversation_id: str,
        filename: str,
        data: bytes,
        content_type: str,
        mode: Mode | str | None = None,
    ) -> Conversation:
        mode = self._mode(mode)
        async with self._turn(conversation_id):
            try:
                extraction = await self.backend.extract_file(filename, data, content_type, mode)
            except DocExplainerError as e:
                logger.error(f"Error uploading file {filename}: {e}")
                return self.store.get(conversation_id)

            conv = self.store.get(conversation_id)
            changes: dict[str, Any] = {"messages": [*conv.messages, make_message("user", extraction.text)]}
            if not conv.messages:
                changes["title"] = truncate_title(filename, FILE_TITLE_MAX_CHARS)
            if extraction.full_content:
                changes["docContent"] = extraction.full_content
            conv = self.store.update(conversation_id, **changes)
            return await self._answer(conv, mode)

    async def _crawl_turn(self, conv: Conversation, url: str, mode: Mode) -> Conversation:
        logger.info(f"Conversation {conv.id}: crawling {url}")
        try:
            result = await self.backend.analyze_docs(url, mode)
        except DocExplainerError as e:
            logger.warning(f"Conversation {conv.id}: crawl of {url} failed: {e}")
            return conv

        self.store.update(conv.id, docUrl=url, docContent=result.content)
        return self.store.append_message(conv.id, make_message("assistant", format_insights(url, result.insights)))

    async def _answer(self, conv: Conversation, mode: Mode) -> Conversation:
        try:
            reply = await self.backend.chat(conv.messages, mode, url=conv.docUrl, doc_content=conv.docContent)
        except DocExplainerError as e:
            logger.warning(f"Conversation {conv.id}: chat turn failed: {e}")
            return conv
        return self.store.append_message(conv.id, make_message("assistant", reply))
