"""Key-value backing stores for the result cache.

A store holds opaque string values under string keys, like browser
``localStorage``.  ``ResultCache`` keeps its whole map under one namespaced
key, so stores only need whole-value reads and writes.

- ``MemoryStore``: process-local dict (tests, ephemeral sessions)
- ``FileStore``: one UTF-8 file per key inside a directory
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

from buildable_area.core.exceptions import StorageCorruptedError, StorageError

logger = logging.getLogger("buildable_area.storage.stores")

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class KeyValueStore(Protocol):
    """Minimal persisted key-value store contract.

    Implementations raise ``StorageError`` on persistence failures and
    ``StorageCorruptedError`` when a stored value cannot be decoded.
    """

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStore:
    """In-process store.  Optional *quota_bytes* emulates a storage quota."""

    def __init__(self, *, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            used = sum(len(v.encode("utf-8")) for k, v in self._data.items() if k != key)
            if used + len(value.encode("utf-8")) > self._quota_bytes:
                msg = f"Storage quota of {self._quota_bytes} bytes exceeded writing {key!r}"
                raise StorageError(msg)
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class FileStore:
    """Directory-backed store; each key maps to ``<directory>/<key>.json``."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def get_item(self, key: str) -> str | None:
        path = self._path_for(key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            msg = f"Cannot read {path}: {exc}"
            raise StorageError(msg) from exc
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            msg = f"{path} is not valid UTF-8: {exc}"
            raise StorageCorruptedError(msg) from exc

    def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            msg = f"Cannot write {path}: {exc}"
            raise StorageError(msg) from exc

    def remove_item(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Cannot remove {path}: {exc}"
            raise StorageError(msg) from exc

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"
