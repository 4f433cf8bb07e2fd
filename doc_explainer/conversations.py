from __future__ import annotations

import time
from typing import Callable, Literal

from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from doc_explainer.config import DEFAULT_CONVERSATION_TITLE
from doc_explainer.errors import ConversationNotFoundError, MessageNotFoundError
from doc_explainer.schemas import Mode
from doc_explainer.storage import KeyValueStorage, make_storage


def now_ms() -> int:
    return int(time.time() * 1000)


_last_id = 0


def new_id(clock: Callable[[], int] = now_ms) -> str:
    """Time-derived id, strictly increasing within the process."""
    global _last_id
    _last_id = max(clock(), _last_id + 1)
    return str(_last_id)


class Message(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: int
    isEditing: bool = Field(default=False, exclude=True)


class Conversation(BaseModel):
    id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    messages: list[Message] = Field(default_factory=list)
    docUrl: str | None = None
    docContent: str | None = None
    createdAt: int
    updatedAt: int


_CONVERSATIONS = TypeAdapter(list[Conversation])

UPDATABLE_FIELDS = frozenset({"messages", "docUrl", "docContent", "title"})


def make_message(role: Literal["user", "assistant"], content: str, *, clock: Callable[[], int] = now_ms) -> Message:
    return Message(id=new_id(clock), role=role, content=content, timestamp=clock())


class ConversationStore:
    """
    Mode-scoped collection of conversations, newest first, persisted on every change.

    Each mode keeps its own storage key; switching mode reloads from that key and
    never falls back to the other mode's data. An empty collection is never
    written; deleting the last conversation removes the key instead.
    """

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        mode: Mode | str = Mode.dev,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.storage = storage if storage is not None else make_storage()
        self.mode = Mode(mode)
        self._clock = clock
        self._conversations: list[Conversation] = []
        self.active_id: str | None = None
        self.load()

    @property
    def conversations(self) -> list[Conversation]:
        return list(self._conversations)

    @property
    def active(self) -> Conversation | None:
        if self.active_id is None:
            return None
        return self._find(self.active_id)

    def _find(self, conversation_id: str) -> Conversation | None:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        return None

    def get(self, conversation_id: str) -> Conversation:
        conv = self._find(conversation_id)
        if conv is None:
            raise ConversationNotFoundError(conversation_id)
        return conv

    # Persistence

    def load(self) -> list[Conversation]:
        raw = self.storage.get(self.mode.storage_key)
        loaded: list[Conversation] = []
        if raw:
            try:
                loaded = _CONVERSATIONS.validate_json(raw)
            except ValidationError as e:
                logger.error(f"Error loading conversations for mode {self.mode.value}: {e}")
        self._conversations = loaded
        self.active_id = loaded[0].id if loaded else None
        return self.conversations

    def save(self) -> bool:
        if not self._conversations:
            return False
        self.storage.set(self.mode.storage_key, _CONVERSATIONS.dump_json(self._conversations).decode("utf-8"))
        return True

    def switch_mode(self, mode: Mode | str) -> None:
        mode = Mode(mode)
        if mode == self.mode:
            return
        self.mode = mode
        self.load()

    # Operations

    def create(self) -> Conversation:
        ts = self._clock()
        conv = Conversation(id=new_id(self._clock), createdAt=ts, updatedAt=ts)
        self._conversations.insert(0, conv)
        self.active_id = conv.id
        self.save()
        return conv

    def select(self, conversation_id: str) -> Conversation:
        conv = self.get(conversation_id)
        self.active_id = conv.id
        return conv

    def delete(self, conversation_id: str) -> None:
        self.get(conversation_id)
        self._conversations = [c for c in self._conversations if c.id != conversation_id]
        if self.active_id == conversation_id:
            self.active_id = self._conversations[0].id if self._conversations else None
        if self._conversations:
            self.save()
        else:
            self.storage.remove(self.mode.storage_key)

    def rename(self, conversation_id: str, title: str) -> Conversation:
        return self.update(conversation_id, title=title)

    def update(self, conversation_id: str, **changes) -> Conversation:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update conversation fields: {sorted(unknown)}")
        conv = self.get(conversation_id)

        if "messages" in changes:
            changes["messages"] = [
                m if isinstance(m, Message) else Message.model_validate(m) for m in changes["messages"]
            ]
        changes["updatedAt"] = max(self._clock(), conv.updatedAt)
        updated = conv.model_copy(update=changes)

        self._conversations = [updated if c.id == conversation_id else c for c in self._conversations]
        self.save()
        return updated

    def append_message(self, conversation_id: str, message: Message) -> Conversation:
        conv = self.get(conversation_id)
        return self.update(conversation_id, messages=[*conv.messages, message])

    def edit_message(self, conversation_id: str, message_id: str, new_content: str) -> Conversation:
        """Replace a message's content and drop every message after it."""
        conv = self.get(conversation_id)
        index = next((i for i, m in enumerate(conv.messages) if m.id == message_id), None)
        if index is None:
            raise MessageNotFoundError(message_id)

        kept = conv.messages[: index + 1]
        kept[-1] = kept[-1].model_copy(update={"content": new_content, "isEditing": False})
        return self.update(conversation_id, messages=kept)
