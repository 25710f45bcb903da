# mediaclean/cache.py
"""
In-memory LRU cache of cleaned image bytes.

Keys only hold the configuration fields that change output bytes, so
toggling e.g. ``preserve_file_date`` never invalidates an entry.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import NamedTuple, Optional, Tuple

from mediaclean import settings
from mediaclean.models import CleaningConfiguration, MetadataFinding

log = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    locator: str
    bake_orientation: bool
    force_srgb: bool
    heic_to_jpeg: bool
    jpeg_quality: int
    heic_quality: int


class CacheEntry(NamedTuple):
    data: bytes
    findings: Tuple[MetadataFinding, ...]
    source_size: int
    stored_at: float


def quality_bucket(quality: float) -> int:
    return int(round(quality * 100))


class ResultCache:

    def __init__(self, max_size: int = settings.CACHE_MAX_ENTRIES):
        self.max_size = max(1, int(max_size))
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(locator, config: CleaningConfiguration) -> CacheKey:
        return CacheKey(
            locator=str(Path(locator)),
            bake_orientation=config.bake_orientation,
            force_srgb=config.force_srgb,
            heic_to_jpeg=config.heic_to_jpeg,
            jpeg_quality=quality_bucket(config.jpeg_quality),
            heic_quality=quality_bucket(config.heic_quality),
        )

    def get(self, key: CacheKey, source_size: int) -> Optional[CacheEntry]:
        """Entry for ``key``, or None. An entry recorded for a different source size is dropped."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.source_size != source_size:
                log.debug(f"Stale cache entry for {key.locator} ({entry.source_size} != {source_size})")
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    def set(self, key: CacheKey, data: bytes, findings, source_size: int) -> None:
        entry = CacheEntry(bytes(data), tuple(findings), source_size, time.time())
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                log.debug(f"Evicted {evicted.locator} from result cache")

    def remove(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._entries
