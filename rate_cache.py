# src/rate_cache.py
"""Single-slot storage for the last good EUR/USD rate.

Every store keeps at most one record under ``CACHE_KEY``; writing replaces it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from pydantic import ValidationError

from models import CachedRate
from settings import Settings, write_json_atomic

logger = logging.getLogger(__name__)

CACHE_KEY = "eurUsdRate"


class RateCache(Protocol):
    def read(self) -> Optional[CachedRate]: ...

    def write(self, record: CachedRate) -> None: ...


class MemoryRateCache:
    """Process-lifetime store holding the serialised record."""

    def __init__(self) -> None:
        self._store: Dict[str, str] = {}

    def read(self) -> Optional[CachedRate]:
        raw = self._store.get(CACHE_KEY)
        if raw is None:
            return None
        return CachedRate.model_validate_json(raw)

    def write(self, record: CachedRate) -> None:
        self._store[CACHE_KEY] = record.model_dump_json()


class JsonFileRateCache:
    """Durable store: one JSON document mapping ``CACHE_KEY`` to the record.

    A missing, unreadable or corrupt file reads as an empty cache.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def read(self) -> Optional[CachedRate]:
        if not self.path.is_file():
            return None
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            entry = document.get(CACHE_KEY) if isinstance(document, dict) else None
            if entry is None:
                return None
            return CachedRate.model_validate(entry)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable rate cache %s: %s", self.path, exc)
            return None

    def write(self, record: CachedRate) -> None:
        document = {CACHE_KEY: record.model_dump(mode="json")}
        write_json_atomic(self.path, document)


class NullRateCache:
    """Caching disabled: nothing is kept, fallbacks go straight to simulation."""

    def read(self) -> Optional[CachedRate]:
        return None

    def write(self, record: CachedRate) -> None:
        return None


def build_cache(settings: Settings) -> RateCache:
    if settings.cache_strategy == "file":
        return JsonFileRateCache(settings.cache_path)
    if settings.cache_strategy == "none":
        return NullRateCache()
    return MemoryRateCache()
