from __future__ import annotations

from typing import Literal

from loguru import logger
from pydantic import BaseModel, ValidationError

from doc_explainer.storage import KeyValueStorage, make_storage

SETTINGS_KEY = "doc-explainer-settings"


class Settings(BaseModel):
    theme: Literal["light", "dark", "auto"] = "dark"
    ttsVoice: str = "alloy"
    density: Literal["compact", "comfortable", "spacious"] = "comfortable"


class SettingsStore:
    """Global UI settings, shared by both modes."""

    def __init__(self, storage: KeyValueStorage | None = None) -> None:
        self.storage = storage if storage is not None else make_storage()

    def load(self) -> Settings:
        raw = self.storage.get(SETTINGS_KEY)
        if not raw:
            return Settings()
        try:
            return Settings.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable settings: {e}")
            return Settings()

    def save(self, settings: Settings) -> None:
        self.storage.set(SETTINGS_KEY, settings.model_dump_json())

    def update(self, **changes) -> Settings:
        settings = Settings.model_validate({**self.load().model_dump(), **changes})
        self.save(settings)
        return settings
