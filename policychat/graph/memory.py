"""
memory.py
---------
File-name cache: file reference -> display name.

File names are immutable once created, so entries are never invalidated. The
cache is an injectable key-value store (`get`/`set`) built once per process and
threaded through the turn graph; tests build a fresh one per test.

Two stores are provided:
- `FileNameCache`: in-memory, with per-key locking so concurrent lookups of the
  same uncached file only hit the backend once.
- `JsonFileNameStore`: the same, persisted to a JSON file so names survive restarts.
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class FileNameCache:
    """
    Process-wide, append-only map of file reference -> display name.
    """
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._guard = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def __len__(self) -> int:
        return len(self._data)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def resolve(self, file_ref: str, load: Callable[[str], str]) -> str:
        """
        Return the cached display name for `file_ref`, loading it on first use.
        A failed load degrades to the raw reference and is not cached.
        """
        cached = self.get(file_ref)
        if cached is not None:
            return cached
        with self._lock_for(file_ref):
            cached = self.get(file_ref)
            if cached is not None:
                return cached
            try:
                name = load(file_ref)
            except Exception as e:
                logger.warning("File name lookup failed for %s: %s", file_ref, e)
                return file_ref
            if not name:
                return file_ref
            self.set(file_ref, name)
            return name


class JsonFileNameStore(FileNameCache):
    """
    `FileNameCache` backed by a JSON file. The file is read once at start-up and
    rewritten on every new entry.
    """
    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Ignoring unreadable file name cache %s: %s", self.path, e)
                data = {}
            if isinstance(data, dict):
                self._data.update({str(k): str(v) for k, v in data.items()})

    def set(self, key: str, value: str) -> None:
        with self._write_lock:
            super().set(key, value)
            self.path.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
