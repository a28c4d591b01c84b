"""
Durable key-value storage used by the offline queue.

Values are opaque strings. Two backends are provided: an in-memory store and
a directory of files, one file per key, replaced atomically on every write.
Storage failures (permissions, full disk) propagate as OSError.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import Protocol

_LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def read(self, key: str) -> str | None:
        ...

    def write(self, key: str, value: str) -> None:
        ...

    def compare_and_swap(self, key: str, expected: str | None, value: str) -> bool:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """Process-local store; contents vanish with the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def read(self, key: str) -> str | None:
        return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def compare_and_swap(self, key: str, expected: str | None, value: str) -> bool:
        with self._lock:
            if self._data.get(key) != expected:
                return False
            self._data[key] = value
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileStore:
    """
    Store each key as a file under directory.

    Writes go to a temporary file that is then renamed over the target, so a
    crash mid-write leaves the previous value intact. compare_and_swap is
    atomic within this process only.
    """

    def __init__(self, directory: str) -> None:
        self._directory = directory
        self._lock = threading.Lock()
        os.makedirs(directory, exist_ok=True)

    @property
    def directory(self) -> str:
        return self._directory

    def read(self, key: str) -> str | None:
        try:
            with open(self._path(key), encoding="utf-8") as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._write(key, value)

    def compare_and_swap(self, key: str, expected: str | None, value: str) -> bool:
        with self._lock:
            if self.read(key) != expected:
                _LOGGER.debug("compare_and_swap lost on key %s", key)
                return False
            self._write(key, value)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                os.remove(self._path(key))
            except FileNotFoundError:
                pass

    def _path(self, key: str) -> str:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return os.path.join(self._directory, f"{safe}.json")

    def _write(self, key: str, value: str) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self._directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self._path(key))
        except BaseException:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise
