from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from doc_explainer.assistant import AnalysisResult, DocAssistant, FileExtraction
from doc_explainer.doc_cache import DocumentCache
from doc_explainer.errors import CrawlError, LLMError
from doc_explainer.schemas import Insights

LONG_TEXT = "Install the client, configure credentials and call the endpoint. " * 8

INSIGHTS_JSON = json.dumps(
    {
        "summary": "A client library for the Example API.",
        "keyPoints": ["Install with pip", "Authenticate with a token"],
        "suggestedQuestions": ["How do I authenticate?"],
    }
)


def page(text: str = LONG_TEXT, links: tuple[str, ...] = ()) -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return (
        "<html><head><title>Docs</title><script>var tracking = 1;</script></head>"
        f"<body><nav>{anchors}</nav><main><h1>Guide</h1><p>{text}</p></main>"
        "<footer>Copyright Example</footer></body></html>"
    )


def site_transport(pages: dict[str, object]) -> httpx.MockTransport:
    """Serves `pages` keyed by absolute URL; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        body = pages.get(url)
        if body is None:
            return httpx.Response(404, text="not found")
        if isinstance(body, Exception):
            raise body
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, html=str(body))

    return httpx.MockTransport(handler)


def client_factory(pages: dict[str, object]):
    transport = site_transport(pages)
    return lambda: httpx.AsyncClient(transport=transport)


class FakeLLM:
    """Scripted stand-in for ProviderChain: replies are returned (or raised) in order."""

    name = "fake"

    def __init__(self, replies=(), *, image_text: str = "TEXT FROM IMAGE") -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []
        self.image_calls: list[dict] = []
        self.image_text = image_text

    async def complete(self, messages, *, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if not self.replies:
            raise LLMError("no scripted reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def read_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        self.image_calls.append({"data": data, "mime_type": mime_type, "prompt": prompt})
        return self.image_text


class FakeBackend:
    """AssistantBackend that records calls and returns canned results."""

    def __init__(self, *, reply: str = "Here is the answer.", crawl_fails: bool = False, chat_fails: bool = False) -> None:
        self.reply = reply
        self.crawl_fails = crawl_fails
        self.chat_fails = chat_fails
        self.analyze_calls: list[tuple[str, object]] = []
        self.chat_calls: list[dict] = []
        self.extract_calls: list[tuple[str, bytes, str, object]] = []
        self.gate: asyncio.Event | None = None

    async def analyze_docs(self, url, mode):
        self.analyze_calls.append((url, mode))
        if self.crawl_fails:
            raise CrawlError("Failed to extract meaningful content")
        return AnalysisResult(insights=Insights.model_validate_json(INSIGHTS_JSON), content=LONG_TEXT)

    async def chat(self, messages, mode, *, url=None, doc_content=None):
        self.chat_calls.append(
            {"messages": [(m.role, m.content) for m in messages], "mode": mode, "url": url, "doc_content": doc_content}
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.chat_fails:
            raise LLMError("all providers failed")
        return self.reply

    async def extract_file(self, filename, data, content_type, mode):
        self.extract_calls.append((filename, data, content_type, mode))
        return FileExtraction(text=f"**{filename}**\n\nanalysis", full_content=data.decode())


@pytest.fixture
def docs_site() -> dict[str, object]:
    return {
        "https://example.com/docs": page(links=("/docs/intro", "/about", "https://other.org/docs/x")),
        "https://example.com/docs/intro": page("Intro page. " + LONG_TEXT),
        "https://example.com/about": page("About us. " + LONG_TEXT),
    }


@pytest.fixture
def make_assistant():
    def _make(pages: dict[str, object], replies=(), **kwargs) -> DocAssistant:
        return DocAssistant(
            FakeLLM(replies),
            doc_cache=DocumentCache(),
            fetch_client_factory=client_factory(pages),
            pdfco_api_key=kwargs.pop("pdfco_api_key", ""),
            **kwargs,
        )

    return _make
