from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Protocol

from loguru import logger


class KeyValueStorage(Protocol):
    """String key -> serialized JSON string, the shape of per-browser local storage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryStorage:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """
    One `<key>.json` file per key under a directory.
    Writes go to a temp file first and are swapped in with os.replace.
    """

    _SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not self._SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def make_storage() -> KeyValueStorage:
    data_dir = (os.environ.get("DOC_EXPLAINER_DATA_DIR") or "").strip()
    if data_dir:
        logger.info(f"Using file storage at {data_dir}")
        return JsonFileStorage(data_dir)
    return InMemoryStorage()
