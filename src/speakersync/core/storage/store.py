"""
Key-value store implementations.

Values are always strings (JSON blobs or scalars rendered as text), mirroring
the browser storage the dataset was originally kept in.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from speakersync.core.exceptions import StorageError

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class Keys:
    """Well-known key names in the persisted namespace."""

    SPEAKERS = "speakers"
    LAST_MODIFIED = "speakers_last_modified"
    VERSION = "speakers_version"
    CONFIG = "config"
    BACKUP_INDEX = "backup_index"
    BACKUP_PREFIX = "backup_"
    CHANGE_JOURNAL = "change_journal"


def backup_key(backup_id: str) -> str:
    """Key under which the payload of backup ``backup_id`` is stored."""
    return f"{Keys.BACKUP_PREFIX}{backup_id}"


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal string key-value contract."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


def _check_key(key: str) -> None:
    if not _KEY_PATTERN.match(key):
        raise StorageError(f"Invalid storage key: {key!r}", key=key)


class MemoryStore:
    """In-memory store backed by a dict."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        _check_key(key)
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class FileStore:
    """
    Directory-backed store with one ``<key>.json`` file per key.

    Writes go to a temp file that is then moved into place, so a crash
    mid-write never leaves a truncated value behind.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Path) -> None:
        """
        Initialize the store.

        Args:
            directory: Directory holding the key files. Created on first write.
        """
        self.directory = directory

    def _path(self, key: str) -> Path:
        _check_key(key)
        return self.directory / f"{key}{self.SUFFIX}"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}", key=key) from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        temp_path = path.with_suffix(".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(value, encoding="utf-8")
            temp_path.replace(path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StorageError(f"Failed to write {key}: {e}", key=key) from e

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}", key=key) from e

    def keys(self, prefix: str = "") -> list[str]:
        if not self.directory.exists():
            return []
        found = [
            p.name[: -len(self.SUFFIX)]
            for p in self.directory.iterdir()
            if p.is_file() and p.name.endswith(self.SUFFIX)
        ]
        return sorted(k for k in found if k.startswith(prefix))
