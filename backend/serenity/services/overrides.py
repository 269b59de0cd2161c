"""
Serenity Manual Overrides — per-user block/allow decisions.

Overrides are the highest-priority classification signal: "block" always
hides a channel, "allow" never does. They are read through an in-memory
index that mirrors the persisted document and is rebuilt whenever the
persisted revision moves (another process or a manual edit).
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional

from serenity.core.errors import ValidationError
from serenity.core.kvstore import KeyValueStore
from serenity.models.models import OverrideAction
from serenity.services.identifiers import normalize_key

logger = logging.getLogger(__name__)

STORAGE_KEY = "serenity_manual_overrides"

# Called with the affected key, or None when everything changed
InvalidationListener = Callable[[Optional[str]], None]


@dataclass(frozen=True)
class Override:
    identifier: str
    action: OverrideAction
    timestamp: int
    handle: Optional[str] = None

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["action"] = self.action.value
        return d

    @classmethod
    def from_dict(cls, data: Dict) -> "Override":
        return cls(
            identifier=str(data["identifier"]),
            action=OverrideAction(data["action"]),
            timestamp=int(data.get("timestamp") or 0),
            handle=data.get("handle") or None,
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


class OverrideStore:
    """Manual overrides keyed by normalized identifier (last write wins)."""

    def __init__(
        self,
        backend: KeyValueStore,
        clock: Callable[[], int] = _now_ms,
    ):
        self._backend = backend
        self._clock = clock
        self._index: Optional[Dict[str, Override]] = None
        self._revision = None
        self._write_lock = asyncio.Lock()
        self._listeners: List[InvalidationListener] = []

    def add_listener(self, listener: InvalidationListener) -> None:
        self._listeners.append(listener)

    # ── Index ────────────────────────────────────────────────────────────

    def _current_index(self) -> Dict[str, Override]:
        revision = self._backend.revision(STORAGE_KEY)
        if self._index is not None and revision == self._revision:
            return self._index

        raw = self._backend.get(STORAGE_KEY) or {}
        index: Dict[str, Override] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                try:
                    record = Override.from_dict(value)
                except (KeyError, TypeError, ValueError):
                    logger.warning(f"Skipping malformed override entry {key!r}")
                    continue
                index[record.identifier] = record

        self._index = index
        self._revision = revision
        logger.debug(f"Loaded {len(index)} manual overrides")
        return index

    def _persist(self, index: Dict[str, Override]) -> None:
        self._backend.set(STORAGE_KEY, {k: v.to_dict() for k, v in index.items()})
        self._index = index
        self._revision = self._backend.revision(STORAGE_KEY)

    def _notify(self, key: Optional[str]) -> None:
        for listener in self._listeners:
            try:
                listener(key)
            except Exception as e:
                logger.warning(f"Override invalidation listener failed for {key!r}: {e}")

    # ── Reads ────────────────────────────────────────────────────────────

    async def get(self, identifier: Optional[str]) -> Optional[OverrideAction]:
        record = await self.get_record(identifier)
        return record.action if record else None

    async def get_record(self, identifier: Optional[str]) -> Optional[Override]:
        key = normalize_key(identifier)
        if not key:
            return None
        return self._current_index().get(key)

    async def list(self) -> List[Override]:
        return list(self._current_index().values())

    async def list_blocked(self) -> List[Override]:
        return [o for o in await self.list() if o.action == OverrideAction.BLOCK]

    async def list_allowed(self) -> List[Override]:
        return [o for o in await self.list() if o.action == OverrideAction.ALLOW]

    # ── Writes ───────────────────────────────────────────────────────────

    async def set(
        self,
        identifier: str,
        action: OverrideAction | str,
        handle: Optional[str] = None,
    ) -> Override:
        key = normalize_key(identifier)
        if not key:
            raise ValidationError("identifier is required")
        try:
            action = OverrideAction(action)
        except ValueError:
            raise ValidationError(f"action must be 'block' or 'allow', got {action!r}")

        async with self._write_lock:
            # Copy-on-write so concurrent readers never see a half-applied change
            index = dict(self._current_index())
            record = Override(
                identifier=key,
                action=action,
                timestamp=self._clock(),
                handle=handle or None,
            )
            index[key] = record
            self._persist(index)

        logger.info(f"Set override for {key}: {action.value}")
        self._notify(key)
        return record

    async def remove(self, identifier: Optional[str]) -> bool:
        key = normalize_key(identifier)
        if not key:
            return False

        async with self._write_lock:
            index = self._current_index()
            if key not in index:
                return False
            index = {k: v for k, v in index.items() if k != key}
            self._persist(index)

        logger.info(f"Removed override for {key}")
        self._notify(key)
        return True

    async def clear_all(self) -> None:
        async with self._write_lock:
            self._persist({})
        logger.info("Cleared all manual overrides")
        self._notify(None)
