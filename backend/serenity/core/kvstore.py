"""
Local key/value persistence used for per-user state (manual overrides).

Each backend reports a `revision(key)` stamp that changes whenever the stored
value changes, including changes made by another process. In-memory indexes
built on top compare stamps to notice external edits.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Hashable, Optional

from serenity.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value, durably, before returning."""

    @abstractmethod
    def revision(self, key: str) -> Optional[Hashable]:
        """Opaque stamp that changes whenever the value under `key` changes."""


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._revisions: Dict[str, int] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            value = self._data.get(key)
        # Hand out copies so callers cannot mutate stored state in place
        return json.loads(json.dumps(value)) if value is not None else None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = json.loads(json.dumps(value))
            self._revisions[key] = self._revisions.get(key, 0) + 1

    def revision(self, key: str) -> Optional[Hashable]:
        with self._lock:
            return self._revisions.get(key)


class JsonFileKeyValueStore(KeyValueStore):
    """All keys live in one JSON document, replaced atomically on write."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = Lock()

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable key/value document {self.path}: {e}")
            return {}
        return raw if isinstance(raw, dict) else {}

    def get(self, key: str) -> Any:
        with self._lock:
            return self._read_document().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            document = self._read_document()
            document[key] = value
            tmp_name = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self.path.name}.", dir=str(self.path.parent)
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, ensure_ascii=True, indent=2)
                os.replace(tmp_name, self.path)
            except (OSError, TypeError, ValueError) as e:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except FileNotFoundError:
                        pass
                raise PersistenceError(f"Failed to write {self.path}: {e}") from e

    def revision(self, key: str) -> Optional[Hashable]:
        # Whole-document stamp: any write bumps every key, which only costs a reload
        try:
            st = self.path.stat()
        except OSError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)
