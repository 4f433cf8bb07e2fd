from __future__ import annotations


class DocExplainerError(Exception):
    """Base class for errors raised by doc_explainer."""


class CrawlError(DocExplainerError):
    """A crawl run produced too little content to be useful."""


class LLMError(DocExplainerError):
    """No configured provider produced a completion."""


class ProviderError(LLMError):
    """A single provider failed; the chain may still try the next one."""


class FileExtractionError(DocExplainerError):
    pass


class ConversationNotFoundError(DocExplainerError, KeyError):
    pass


class MessageNotFoundError(DocExplainerError, KeyError):
    pass


class TurnInFlightError(DocExplainerError):
    """A turn is already running for this conversation."""


class BackendError(DocExplainerError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
