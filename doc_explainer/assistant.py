from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import httpx
from loguru import logger

from doc_explainer.config import (
    CHAT_CONTEXT_CHARS,
    FILE_ANALYSIS_CHARS,
    FILE_PREVIEW_CHARS,
    MAX_CONTENT_CHARS,
    MAX_PAGES,
    MIN_CRAWL_CONTENT_CHARS,
    _env,
)
from doc_explainer.crawler import crawl
from doc_explainer.doc_cache import DocumentCache
from doc_explainer.errors import CrawlError, FileExtractionError, LLMError
from doc_explainer.fetcher import build_client
from doc_explainer.llm_client import ProviderChain, build_provider_chain
from doc_explainer.prompts import FILE_ANALYSIS, IMAGE_OCR, TTS_SCRIPT, chat_system_prompt
from doc_explainer.schemas import Insights, Mode, TtsResponse
from doc_explainer.summarizer import summarize_document

PDFCO_BASE_URL = "https://api.pdf.co/v1"


@dataclass
class AnalysisResult:
    insights: Insights
    content: str


@dataclass
class FileExtraction:
    text: str
    full_content: str | None = None


def clean_history(messages: Iterable[Any]) -> list[dict[str, str]]:
    """Role/content pairs only; ids, timestamps and UI flags are dropped."""
    cleaned = []
    for m in messages:
        if isinstance(m, dict):
            role, content = m.get("role"), m.get("content")
        else:
            role, content = getattr(m, "role", None), getattr(m, "content", None)
        if role not in {"user", "assistant"} or content is None:
            raise ValueError(f"Invalid chat message: {m!r}")
        cleaned.append({"role": role, "content": content})
    return cleaned


def _api_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=60)


class DocAssistant:
    """
    Crawl-and-summarize, grounded chat, file extraction and speech-script
    rewriting. Shared by the HTTP API and the in-process chat backend.
    """

    def __init__(
        self,
        llm: ProviderChain | None = None,
        *,
        doc_cache: DocumentCache | None = None,
        fetch_client_factory: Callable[[], httpx.AsyncClient] = build_client,
        api_client_factory: Callable[[], httpx.AsyncClient] = _api_client,
        pdfco_api_key: str | None = None,
        max_pages: int = MAX_PAGES,
    ) -> None:
        self.llm = llm if llm is not None else build_provider_chain()
        self.doc_cache = doc_cache if doc_cache is not None else DocumentCache()
        self._fetch_client_factory = fetch_client_factory
        self._api_client_factory = api_client_factory
        self.pdfco_api_key = pdfco_api_key if pdfco_api_key is not None else _env("PDFCO_API_KEY")
        self.max_pages = max_pages

    # Documentation sites

    async def analyze_docs(self, url: str, mode: Mode) -> AnalysisResult:
        async with self._fetch_client_factory() as client:
            result = await crawl(url, self.max_pages, client=client)

        if len(result.content) < MIN_CRAWL_CONTENT_CHARS:
            raise CrawlError(
                f"Failed to extract meaningful content from {url} "
                f"({len(result.content)} chars from {len(result.visited)} pages)"
            )

        self.doc_cache.put(url, result.content)
        insights = await summarize_document(result.content, mode, self.llm)
        return AnalysisResult(insights=insights, content=result.content)

    # Chat

    async def chat(
        self,
        messages: Iterable[Any],
        mode: Mode,
        *,
        url: str | None = None,
        doc_content: str | None = None,
    ) -> str:
        history = clean_history(messages)
        if not history:
            raise ValueError("Messages array is required")

        context = doc_content or ""
        if not context and url:
            context = self.doc_cache.get(url) or ""
            if context:
                logger.debug(f"Using cached document for {url}")

        system = chat_system_prompt(mode, context[:CHAT_CONTEXT_CHARS])
        temperature = 0.8 if mode == Mode.user else 0.7
        return await self.llm.complete(
            [{"role": "system", "content": system}, *history],
            temperature=temperature,
            max_tokens=2000,
        )

    # Uploaded files

    async def extract_file(self, filename: str, data: bytes, content_type: str, mode: Mode) -> FileExtraction:
        content_type = (content_type or "").lower()
        logger.info(f"Extracting text from file: {filename} ({content_type})")

        text = ""
        if content_type.startswith("image/"):
            try:
                text = await self.llm.read_image(data, content_type, IMAGE_OCR)
            except LLMError as e:
                logger.error(f"Image text extraction failed for {filename}: {e}")
        elif content_type == "application/pdf":
            if not self.pdfco_api_key:
                logger.error("PDF.co API key not configured")
                return FileExtraction(
                    text=f"**{filename}**\n\nPDF uploaded successfully. Please describe what information you need from this document."
                )
            try:
                text = await self._pdf_to_text(filename, data)
            except FileExtractionError as e:
                logger.error(f"PDF conversion failed for {filename}: {e}")
                return FileExtraction(text=f"**{filename}**\n\nPDF uploaded. Please describe what you need help with.")
        elif content_type.startswith("text/"):
            text = data.decode("utf-8", errors="replace")[:MAX_CONTENT_CHARS]

        if not text:
            return FileExtraction(text=f"**{filename}**\n\nFile uploaded. What would you like to know?")

        try:
            analysis = await self._analyze_file(text, mode)
        except LLMError as e:
            logger.error(f"Error analyzing file {filename}: {e}")
            preview = text[:FILE_PREVIEW_CHARS]
            return FileExtraction(text=f"**{filename}**\n\n{preview}...", full_content=text)

        return FileExtraction(text=_format_file_analysis(filename, analysis, mode), full_content=text)

    async def _analyze_file(self, text: str, mode: Mode) -> str:
        prompt = FILE_ANALYSIS[mode].format(content=text[:FILE_ANALYSIS_CHARS])
        temperature, max_tokens = (0.7, 1500) if mode == Mode.user else (0.6, 1000)
        return await self.llm.complete(
            [{"role": "user", "content": prompt}], temperature=temperature, max_tokens=max_tokens
        )

    async def _pdf_to_text(self, filename: str, data: bytes) -> str:
        headers = {"x-api-key": self.pdfco_api_key or "", "Content-Type": "application/json"}
        async with self._api_client_factory() as client:
            try:
                r = await client.post(
                    f"{PDFCO_BASE_URL}/file/upload/base64",
                    headers=headers,
                    json={"file": base64.b64encode(data).decode("ascii"), "name": filename},
                )
                if r.status_code >= 400:
                    raise FileExtractionError(f"upload failed: {r.status_code} {r.text[:300]}")
                upload = r.json()
                if upload.get("error") is not False or not upload.get("url"):
                    raise FileExtractionError(f"upload rejected: {upload}")

                r = await client.post(
                    f"{PDFCO_BASE_URL}/pdf/convert/to/text",
                    headers=headers,
                    json={"url": upload["url"], "inline": True, "lang": "eng"},
                )
                converted = r.json()
            except (httpx.HTTPError, ValueError) as e:
                raise FileExtractionError(str(e)) from e

        if converted.get("error") is not False or not converted.get("body"):
            logger.warning(f"PDF.co returned no text for {filename}: {converted.get('message')}")
            return ""
        return str(converted["body"])[:MAX_CONTENT_CHARS]

    # Speech

    async def tts_script(self, content: str) -> str:
        try:
            return await self.llm.complete(
                [{"role": "user", "content": TTS_SCRIPT.format(content=content)}],
                temperature=0.7,
                max_tokens=1000,
            )
        except LLMError as e:
            logger.warning(f"TTS script generation failed, returning original content: {e}")
            return content

    def tts(self, text: str, voice: str) -> TtsResponse:
        # No server-side synthesis; clients speak the text with their own engine.
        logger.debug(f"TTS requested ({len(text)} chars, voice={voice}); signalling client fallback")
        return TtsResponse(useFallback=True, voice=voice, error="Using browser TTS")


def _format_file_analysis(filename: str, analysis: str, mode: Mode) -> str:
    if mode == Mode.user:
        return (
            f"**{filename}** has been analyzed!\n\n{analysis}\n\n---\n\n"
            "**What would you like to do?**\n"
            "• Create flashcards from this content\n"
            "• Generate a practice quiz\n"
            "• Get detailed explanations of any topic\n"
            "• Ask specific questions\n\n"
            "Just let me know!"
        )
    return f"**{filename}**\n\n{analysis}\n\n---\n\nAsk me anything about this documentation!"
