"""Small JSON-file TTL cache for metadata provider responses."""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable

from engine.paths import DATA_DIR

logger = logging.getLogger(__name__)

SCENE_TTL_SECONDS = 24 * 60 * 60
ENTITY_TTL_SECONDS = 7 * 24 * 60 * 60
SCENE_LIST_TTL_SECONDS = 6 * 60 * 60


class MetadataCache:
    def __init__(self, cache_path: str | None = None, *, clock: Callable[[], float] = time.time) -> None:
        path = cache_path or os.getenv("SCENARR_METADATA_CACHE_PATH") or str(DATA_DIR / "cache" / "metadata.json")
        self._path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, dict[str, Any]] = {}
        self._loaded = False

    def _load_locked(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Metadata cache unreadable, starting empty: %s", self._path)
            return
        if isinstance(payload, dict):
            self._entries = payload

    def _persist_locked(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        tmp_path.write_text(json.dumps(self._entries, ensure_ascii=True, separators=(",", ":")), encoding="utf-8")
        tmp_path.replace(self._path)

    def get(self, key: str) -> Any:
        with self._lock:
            self._load_locked()
            entry = self._entries.get(key)
            if not isinstance(entry, dict):
                return None
            if float(entry.get("expires_at") or 0.0) <= self._clock():
                del self._entries[key]
                return None
            return entry.get("value")

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._load_locked()
            self._entries[key] = {
                "expires_at": self._clock() + max(1, int(ttl_seconds)),
                "value": value,
            }
            self._persist_locked()

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._load_locked()
            if self._entries.pop(key, None) is not None:
                self._persist_locked()

    def prune(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            self._load_locked()
            now = self._clock()
            expired = [k for k, v in self._entries.items() if float((v or {}).get("expires_at") or 0.0) <= now]
            for key in expired:
                del self._entries[key]
            if expired:
                self._persist_locked()
            return len(expired)
