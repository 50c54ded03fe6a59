"""Key-value storage backends for the local session store."""

from __future__ import annotations

import os
import re
import tempfile
from typing import Dict, Optional, Protocol

from app.exceptions import StorageUnavailable

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStorage(Protocol):
    """String slots addressed by key. Each set replaces the whole slot."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage, lost on exit."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """
    One file per key under a directory.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so a reader sees either the old slot or the new one.
    """

    def __init__(self, directory: str) -> None:
        self.directory = directory

    def _path(self, key: str) -> str:
        if not _SAFE_KEY.match(key):
            raise StorageUnavailable(f"Invalid storage key: {key!r}")
        return os.path.join(self.directory, f"{key}.json")

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return fh.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {key}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            os.makedirs(self.directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(value)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {key}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageUnavailable(f"Cannot remove {key}: {e}") from e
