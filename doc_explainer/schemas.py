from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field


class Mode(str, Enum):
    dev = "dev"
    user = "user"

    @classmethod
    def _missing_(cls, value: object) -> "Mode | None":
        # Older clients sent the persona name instead of the mode key.
        aliases = {"developer": cls.dev, "education": cls.user, "learner": cls.user, "learning": cls.user}
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None

    @property
    def storage_key(self) -> str:
        return f"doc-explainer-{self.value}-conversations"


# Older clients sent "persona" for the mode field.
_MODE_ALIASES = AliasChoices("mode", "persona")


class Insights(BaseModel):
    summary: str
    keyPoints: list[str] = Field(default_factory=list)
    suggestedQuestions: list[str] = Field(default_factory=list)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ScrapeDocsRequest(BaseModel):
    url: str = Field(..., min_length=1, description="Documentation URL to crawl and summarize")
    mode: Mode = Field(Mode.dev, validation_alias=_MODE_ALIASES)


class ScrapeDocsResponse(BaseModel):
    insights: Insights
    content: str


class ChatDocsRequest(BaseModel):
    url: str | None = None
    docContent: str | None = None
    messages: list[ChatMessage] = Field(..., min_length=1)
    mode: Mode = Field(Mode.dev, validation_alias=_MODE_ALIASES)


class ChatDocsResponse(BaseModel):
    response: str


class ExtractFileResponse(BaseModel):
    text: str
    fullContent: str | None = None


class TtsScriptRequest(BaseModel):
    content: str = Field(..., min_length=1)


class TtsScriptResponse(BaseModel):
    script: str


class TtsRequest(BaseModel):
    text: str = Field(..., min_length=1)
    voice: str = "x_Catherine"


class TtsResponse(BaseModel):
    useFallback: bool = True
    voice: str
    error: str | None = None


class ErrorResponse(BaseModel):
    error: str
