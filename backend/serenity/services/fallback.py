"""
Bundled channel classifications — the last tier consulted by the resolver.

A read-only JSON object mapping identifier → classification, loaded once.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Dict, Mapping, Optional

from serenity.models.models import Classification
from serenity.services.identifiers import normalize

logger = logging.getLogger(__name__)


class StaticFallbackDataset:
    def __init__(self, path: Optional[str | Path] = None, data: Optional[Mapping[str, str]] = None):
        self.path = Path(path) if path else None
        self._exact: Optional[Dict[str, Classification]] = None
        self._folded: Dict[str, Classification] = {}
        self._lock = Lock()
        if data is not None:
            self._build(data)

    def _build(self, data: Mapping[str, str]) -> None:
        exact: Dict[str, Classification] = {}
        folded: Dict[str, Classification] = {}
        for key, value in data.items():
            try:
                classification = Classification(value)
            except ValueError:
                logger.warning(f"Ignoring fallback entry {key!r}: unknown classification {value!r}")
                continue
            exact[key] = classification
            # First key wins for case-insensitive lookups, as a linear scan would
            folded.setdefault(key.lower(), classification)
        self._exact = exact
        self._folded = folded

    def load(self) -> None:
        with self._lock:
            if self._exact is not None:
                return
            data: Mapping[str, str] = {}
            if self.path is None:
                logger.info("No fallback dataset configured")
            else:
                try:
                    raw = json.loads(self.path.read_text(encoding="utf-8"))
                    if isinstance(raw, dict):
                        data = raw
                    else:
                        logger.error(f"Fallback dataset {self.path} is not a JSON object")
                except (OSError, json.JSONDecodeError) as e:
                    logger.error(f"Error loading fallback dataset {self.path}: {e}")
            self._build(data)
            logger.info(f"Loaded {len(self._exact or {})} bundled channel classifications")

    def lookup(self, identifier: Optional[str]) -> Optional[Classification]:
        if self._exact is None:
            self.load()
        name = normalize(identifier)
        if not name:
            return None
        hit = self._exact.get(name)
        if hit is not None:
            return hit
        return self._folded.get(name.lower())

    def __len__(self) -> int:
        if self._exact is None:
            self.load()
        return len(self._exact)
