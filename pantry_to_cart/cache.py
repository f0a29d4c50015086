from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

_SUFFIX = "_v1.json"


@dataclass(frozen=True)
class CacheEntry:
    payload: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


def cache_key_hash(key: str) -> str:
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class FileCache:
    """One JSON file per key under *directory*, named by the MD5 of the key.

    Each file holds ``{"content": ..., "timestamp": ..., "ttl": ...}``. An
    expired entry reads as a miss but stays on disk until :meth:`evict_stale`.
    Concurrent writers to the same key race; the last rename wins.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        default_ttl: float = 3600.0,
        max_entries: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.default_ttl = float(default_ttl)
        self.max_entries = max_entries
        self._clock = clock
        self._cleanup_lock = threading.Lock()
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{cache_key_hash(key)}{_SUFFIX}"

    def get(self, key: str) -> Any | None:
        """Stored payload, or None when missing or expired.

        Values round-trip through JSON: a stored None reads like a miss and
        tuples come back as lists.
        """
        entry = self._read(self.path_for(key))
        if entry is None:
            logger.debug("cache miss: %s", key)
            return None
        if entry.is_expired(self._clock()):
            logger.debug("cache expired: %s", key)
            return None
        logger.debug("cache hit: %s", key)
        return entry.payload

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        record = {
            "key": key,
            "content": value,
            "timestamp": self._clock(),
            "ttl": self.default_ttl if ttl is None else float(ttl),
        }
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(record, fh, ensure_ascii=False)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("cache write failed for %s: %s", key, exc)
            return
        logger.debug("cached %s -> %s", key, path.name)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(list(self._files()))

    def evict_stale(self) -> int:
        """Drop expired entries, then the oldest ones while over ``max_entries``.

        Returns the number of files removed. Unreadable files count as expired.
        """
        with self._cleanup_lock:
            now = self._clock()
            deleted = 0
            remaining: list[tuple[float, Path]] = []

            for path in self._files():
                entry = self._read(path)
                if entry is None or entry.is_expired(now):
                    if self._unlink(path):
                        deleted += 1
                    continue
                remaining.append((entry.stored_at, path))

            overflow = len(remaining) - self.max_entries
            if overflow > 0:
                remaining.sort(key=lambda x: x[0])
                for _, path in remaining[:overflow]:
                    if self._unlink(path):
                        deleted += 1

            if deleted:
                logger.info("cache cleanup in %s removed %d files", self.directory, deleted)
            return deleted

    def _files(self):
        if not self.directory.exists():
            return iter(())
        return self.directory.glob(f"*{_SUFFIX}")

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("cache read failed for %s: %s", path.name, exc)
            return None
        try:
            data = json.loads(raw)
            return CacheEntry(
                payload=data["content"],
                stored_at=float(data["timestamp"]),
                ttl=float(data["ttl"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("corrupt cache file %s: %s", path.name, exc)
            return None

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("failed to delete cache file %s: %s", path.name, exc)
            return False
