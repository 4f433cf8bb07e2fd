from __future__ import annotations

import asyncio
import base64
from typing import Any, Awaitable, Callable, Protocol

import httpx
from google import genai
from google.genai import types
from loguru import logger

from doc_explainer.config import DEFAULT_PROVIDER_ORDER, LLM_TIMEOUT_SECONDS, _env
from doc_explainer.errors import LLMError, ProviderError

ChatMessages = list[dict[str, str]]


class ChatProvider(Protocol):
    name: str

    async def complete(self, messages: ChatMessages, *, temperature: float, max_tokens: int) -> str: ...

    async def read_image(self, data: bytes, mime_type: str, prompt: str) -> str: ...


class GeminiProvider:
    """
    Supports two modes:
    - Vertex AI mode (recommended on Cloud Run): GOOGLE_CLOUD_PROJECT + GOOGLE_CLOUD_LOCATION
    - API key mode (local/dev): GOOGLE_API_KEY
    """

    name = "gemini"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        project: str | None = None,
        location: str = "us-central1",
        model: str = "gemini-2.0-flash",
    ) -> None:
        self.model = model
        if api_key:
            self.client = genai.Client(api_key=api_key)
        elif project:
            # Uses ADC (service account) on Cloud Run
            self.client = genai.Client(vertexai=True, project=project, location=location)
        else:
            raise RuntimeError(
                "Missing config: set GOOGLE_API_KEY (local) or GOOGLE_CLOUD_PROJECT (+ optional GOOGLE_CLOUD_LOCATION) (Vertex/Cloud Run)."
            )

    @classmethod
    def from_env(cls) -> "GeminiProvider | None":
        api_key = _env("GOOGLE_API_KEY")
        project = _env("GOOGLE_CLOUD_PROJECT")
        if not api_key and not project:
            return None
        return cls(
            api_key=api_key,
            project=project,
            location=_env("GOOGLE_CLOUD_LOCATION", "us-central1") or "us-central1",
            model=_env("GEMINI_MODEL", "gemini-2.0-flash") or "gemini-2.0-flash",
        )

    @staticmethod
    def _is_model_not_found(err: Exception) -> bool:
        msg = str(err)
        return (
            "NOT_FOUND" in msg
            and ("was not found" in msg or "not found" in msg)
            and ("Publisher Model" in msg or "models/" in msg or "Call ListModels" in msg)
        )

    async def _generate(self, contents: list[types.Content], config: types.GenerateContentConfig) -> str:
        # Model availability varies by project/region; walk down the list on "model not found".
        candidates = [self.model, "gemini-2.0-flash", "gemini-1.5-flash", "gemini-1.5-pro"]
        last_err: Exception | None = None
        tried: set[str] = set()
        for m in candidates:
            if m in tried:
                continue
            tried.add(m)
            try:
                resp = await self.client.aio.models.generate_content(model=m, contents=contents, config=config)
            except Exception as e:
                last_err = e
                if self._is_model_not_found(e):
                    logger.warning(f"Gemini model {m} not available, trying next candidate")
                    continue
                raise ProviderError(f"gemini: {e}") from e
            text = (resp.text or "").strip()
            if not text:
                raise ProviderError("gemini: empty response")
            return text
        raise ProviderError(f"gemini: all model candidates failed. Last error: {last_err}")

    async def complete(self, messages: ChatMessages, *, temperature: float, max_tokens: int) -> str:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in messages
            if m["role"] != "system"
        ]
        config = types.GenerateContentConfig(
            system_instruction=system or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
        )
        return await self._generate(contents, config)

    async def read_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        contents = [
            types.Content(
                role="user",
                parts=[types.Part.from_bytes(data=data, mime_type=mime_type), types.Part(text=prompt)],
            )
        ]
        return await self._generate(contents, types.GenerateContentConfig(max_output_tokens=2000))


class OpenAICompatibleProvider:
    """Any `/chat/completions` endpoint speaking the OpenAI wire format (Groq, SiliconFlow)."""

    PRESETS: dict[str, dict[str, str]] = {
        "groq": {
            "base_url": "https://api.groq.com/openai/v1",
            "model": "llama-3.3-70b-versatile",
            "vision_model": "meta-llama/llama-4-scout-17b-16e-instruct",
            "key_env": "GROQ_API_KEY",
        },
        "siliconflow": {
            "base_url": "https://api.siliconflow.com/v1",
            "model": "deepseek-ai/DeepSeek-V3",
            "vision_model": "Qwen/Qwen2.5-VL-72B-Instruct",
            "key_env": "SILICONFLOW_API_KEY",
        },
    }

    def __init__(
        self,
        name: str,
        *,
        base_url: str,
        api_key: str,
        model: str,
        vision_model: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.vision_model = vision_model or model
        self._client = client
        self._timeout = timeout

    @classmethod
    def from_env(cls, name: str) -> "OpenAICompatibleProvider | None":
        preset = cls.PRESETS.get(name)
        if preset is None:
            return None
        api_key = _env(preset["key_env"])
        if not api_key:
            return None
        prefix = name.upper()
        return cls(
            name,
            base_url=_env(f"{prefix}_BASE_URL", preset["base_url"]) or preset["base_url"],
            api_key=api_key,
            model=_env(f"{prefix}_MODEL", preset["model"]) or preset["model"],
            vision_model=_env(f"{prefix}_VISION_MODEL", preset["vision_model"]),
        )

    async def _post(self, payload: dict[str, Any]) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        url = f"{self.base_url}/chat/completions"
        try:
            if self._client is not None:
                r = await self._client.post(url, headers=headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    r = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name}: {e!r}") from e

        if r.status_code >= 400:
            raise ProviderError(f"{self.name}: HTTP {r.status_code} {r.text[:500]}")
        try:
            content = r.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"{self.name}: malformed response {r.text[:500]}") from e
        if not content or not str(content).strip():
            raise ProviderError(f"{self.name}: empty response")
        return str(content).strip()

    async def complete(self, messages: ChatMessages, *, temperature: float, max_tokens: int) -> str:
        return await self._post(
            {"model": self.model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens}
        )

    async def read_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        data_url = f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
        return await self._post(
            {
                "model": self.vision_model,
                "messages": [
                    {
                        "role": "user",
                        "content": [
                            {"type": "image_url", "image_url": {"url": data_url}},
                            {"type": "text", "text": prompt},
                        ],
                    }
                ],
                "max_tokens": 2000,
            }
        )


class ProviderChain:
    """Tries each provider in order until one answers."""

    def __init__(self, providers: list[ChatProvider], *, timeout: float = LLM_TIMEOUT_SECONDS) -> None:
        self.providers = list(providers)
        self.timeout = timeout

    async def _first_success(self, what: str, call: Callable[[ChatProvider], Awaitable[str]]) -> str:
        if not self.providers:
            raise LLMError("No LLM provider configured")
        errors: list[str] = []
        for provider in self.providers:
            try:
                return await asyncio.wait_for(call(provider), timeout=self.timeout)
            except asyncio.TimeoutError:
                errors.append(f"{provider.name}: timed out after {self.timeout}s")
            except Exception as e:
                errors.append(f"{provider.name}: {e}")
            logger.warning(f"{what} via {provider.name} failed: {errors[-1]}")
        raise LLMError(f"All providers failed for {what}: " + "; ".join(errors))

    async def complete(self, messages: ChatMessages, *, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        return await self._first_success(
            "completion",
            lambda p: p.complete(messages, temperature=temperature, max_tokens=max_tokens),
        )

    async def read_image(self, data: bytes, mime_type: str, prompt: str) -> str:
        return await self._first_success("image read", lambda p: p.read_image(data, mime_type, prompt))


def build_provider_chain() -> ProviderChain:
    order = [n.strip().lower() for n in (_env("LLM_PROVIDERS", DEFAULT_PROVIDER_ORDER) or "").split(",") if n.strip()]
    providers: list[ChatProvider] = []
    for name in order:
        provider: ChatProvider | None
        if name == "gemini":
            provider = GeminiProvider.from_env()
        else:
            provider = OpenAICompatibleProvider.from_env(name)
        if provider is None:
            logger.debug(f"LLM provider {name!r} not configured, skipping")
            continue
        providers.append(provider)
    if not providers:
        logger.warning("No LLM providers configured; completions will fail")
    else:
        logger.info("LLM providers: " + ", ".join(p.name for p in providers))
    return ProviderChain(providers)
