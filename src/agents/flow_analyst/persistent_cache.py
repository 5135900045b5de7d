"""
Persistent Analysis Cache, the durable tier of the method analysis cache.

Entries live in a single JSON document::

    {
        "version": "1.0.0",
        "last_saved": "2026-01-01T12:00:00+00:00",
        "entries": {"UserService#createUser": {...}, ...}
    }

The file is loaded lazily on first use.  Any I/O or decode failure is
logged and the tier behaves as empty; analysis never fails because of it.
Concurrent writers are not coordinated, the last save wins.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError

from src.agents.flow_analyst.models import MethodAnalysis, MethodKey
from src.shared.exceptions import CacheError

logger = logging.getLogger("flow-analyst.persistent-cache")

CACHE_VERSION = "1.0.0"
DEFAULT_RETENTION_DAYS = 30
DEFAULT_MAX_ENTRIES = 1000

_SECONDS_PER_DAY = 24 * 60 * 60


class PersistentCacheEntry(BaseModel):
    """One durable entry: the analysis plus what it was produced from."""

    analysis: MethodAnalysis
    fingerprint: str
    oracle_identity: str
    timestamp: float
    source_path: str = ""
    version: str = CACHE_VERSION


class PersistentAnalysisCache:
    """JSON-file backed tier with retention and a hard entry cap."""

    def __init__(
        self,
        path: str | Path,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.path = Path(path)
        self.retention_days = retention_days
        self.max_entries = max_entries
        self._entries: dict[str, PersistentCacheEntry] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    # ─── File I/O (runs in a worker thread) ────────────────────

    def _read_file(self) -> dict[str, PersistentCacheEntry]:
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CacheError(f"Failed to read cache file {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("entries", {}), dict):
            raise CacheError(f"Cache file {self.path} is not a cache document")

        if data.get("version") != CACHE_VERSION:
            logger.info(
                "Ignoring cache file %s with version %s (expected %s)",
                self.path, data.get("version"), CACHE_VERSION,
            )
            return {}

        entries: dict[str, PersistentCacheEntry] = {}
        for key, raw in data.get("entries", {}).items():
            try:
                entries[key] = PersistentCacheEntry.model_validate(raw)
            except ValidationError as e:
                logger.warning("Dropping malformed cache entry %s: %s", key, e)
        return entries

    def _write_file(self, entries: dict[str, PersistentCacheEntry]) -> None:
        payload = {
            "version": CACHE_VERSION,
            "last_saved": datetime.now(timezone.utc).isoformat(),
            "entries": {key: entry.model_dump(mode="json") for key, entry in entries.items()},
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            raise CacheError(f"Failed to write cache file {self.path}: {e}") from e

    # ─── Maintenance ───────────────────────────────────────────

    def _purge(self) -> int:
        """Drop entries past retention, then the oldest ones over the cap."""
        cutoff = time.time() - self.retention_days * _SECONDS_PER_DAY
        expired = [k for k, e in self._entries.items() if e.timestamp < cutoff]
        for key in expired:
            del self._entries[key]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries, key=lambda k: self._entries[k].timestamp)[:overflow]
            for key in oldest:
                del self._entries[key]
            expired.extend(oldest)

        if expired:
            logger.info("Purged %d durable cache entries", len(expired))
        return len(expired)

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        try:
            self._entries = await asyncio.to_thread(self._read_file)
        except CacheError as e:
            logger.warning("%s; continuing with an empty durable cache", e)
            self._entries = {}
        self._loaded = True
        self._purge()
        logger.info("Loaded %d durable cache entries from %s", len(self._entries), self.path)

    async def _save(self) -> None:
        snapshot = dict(self._entries)
        try:
            await asyncio.to_thread(self._write_file, snapshot)
        except CacheError as e:
            logger.warning("%s; durable cache not persisted", e)

    # ─── Public API ────────────────────────────────────────────

    async def get(
        self,
        key: MethodKey,
        fingerprint: str,
        oracle_identity: str,
    ) -> MethodAnalysis | None:
        async with self._lock:
            await self._ensure_loaded()
            entry = self._entries.get(str(key))
            if entry is None:
                return None

            if (
                entry.fingerprint != fingerprint
                or entry.oracle_identity != oracle_identity
                or entry.version != CACHE_VERSION
            ):
                logger.info("Stale durable cache entry for %s, removing", key)
                del self._entries[str(key)]
                await self._save()
                return None

            return entry.analysis

    async def set(
        self,
        key: MethodKey,
        analysis: MethodAnalysis,
        fingerprint: str,
        oracle_identity: str,
        source_path: str = "",
    ) -> None:
        async with self._lock:
            await self._ensure_loaded()
            self._entries[str(key)] = PersistentCacheEntry(
                analysis=analysis,
                fingerprint=fingerprint,
                oracle_identity=oracle_identity,
                timestamp=time.time(),
                source_path=source_path,
            )
            self._purge()
            await self._save()

    async def invalidate(self, type_name: str, method_name: str | None = None) -> int:
        async with self._lock:
            await self._ensure_loaded()
            if method_name is not None:
                keys = [str(MethodKey(type_name, method_name))]
            else:
                keys = [k for k in self._entries if MethodKey.parse(k).type_name == type_name]
            removed = 0
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
            if removed:
                await self._save()
            return removed

    async def clear(self) -> None:
        async with self._lock:
            self._entries = {}
            self._loaded = True
            await self._save()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        try:
            size_kb = round(self.path.stat().st_size / 1024, 2) if self.path.exists() else 0.0
        except OSError:
            size_kb = 0.0
        return {
            "entries": len(self._entries),
            "file_path": str(self.path),
            "size_kb": size_kb,
            "version": CACHE_VERSION,
        }
