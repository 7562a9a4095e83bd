from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from .errors import StoreError


class KeyValueStorage(Protocol):
    """String key/value substrate shared by the foreground and background contexts."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: Mapping[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def set_many(self, items: Mapping[str, str]) -> None:
        self.data.update(items)


class JsonFileStorage:
    """
    All keys live in one JSON object on disk.

    Writes go to a temp file in the same directory followed by os.replace, so a
    reader in another process sees the old or the new document, never a torn one.
    There is no cross-process lock: two writers racing on different keys can lose
    one of the updates.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreError(f"cannot read {self.path}: {e}") from e
        if not text.strip():
            return {}
        try:
            d = json.loads(text)
        except json.JSONDecodeError as e:
            raise StoreError(f"corrupt storage file {self.path}: {e}") from e
        if not isinstance(d, dict):
            raise StoreError(f"storage file {self.path} does not hold a JSON object")
        return {str(k): str(v) for k, v in d.items()}

    def _write(self, d: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(d, f, ensure_ascii=False, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreError(f"cannot write {self.path}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, items: Mapping[str, str]) -> None:
        d = self._read()
        d.update(items)
        self._write(d)
