"""
Method Analysis Cache: DP memoization for flow analysis.

Two tiers:

* ``SessionAnalysisCache``: in-process, TTL-bounded, oldest-first
  eviction.  A hit short-circuits the oracle, so within one process each
  (type, method) is analyzed at most once while its source is unchanged.
* ``PersistentAnalysisCache`` (see ``persistent_cache.py``): optional
  JSON file that survives restarts.

``MethodAnalysisCache`` puts the two behind one ``get`` / ``set`` API.
Both tiers validate entries against the source fingerprint and the
oracle identity that produced them.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from src.agents.flow_analyst.models import MethodAnalysis, MethodKey
from src.agents.flow_analyst.persistent_cache import PersistentAnalysisCache

logger = logging.getLogger("flow-analyst.cache")

DEFAULT_TTL_S = 300.0
DEFAULT_MAX_ENTRIES = 100


@dataclass
class CacheEntry:
    """One memoized analysis in the session tier."""

    key: MethodKey
    analysis: MethodAnalysis
    inserted_at: float
    fingerprint: str
    oracle_identity: str
    access_count: int = 0


@dataclass
class CacheStats:
    total_entries: int = 0
    hit_count: int = 0
    miss_count: int = 0
    eviction_count: int = 0
    hit_rate: float = 0.0
    average_analysis_ms: float = 0.0
    _timing_total_ms: float = field(default=0.0, repr=False)
    _timing_count: int = field(default=0, repr=False)

    def to_dict(self) -> dict:
        return {
            "total_entries": self.total_entries,
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "eviction_count": self.eviction_count,
            "hit_rate": round(self.hit_rate, 4),
            "average_analysis_ms": round(self.average_analysis_ms, 1),
        }


class SessionAnalysisCache:
    """In-memory tier keyed by MethodKey."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[MethodKey, CacheEntry] = {}
        self._max_entries = max_entries
        self._ttl_s = ttl_s
        self._clock = clock
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: MethodKey) -> bool:
        return key in self._entries

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.inserted_at > self._ttl_s

    def _update_hit_rate(self) -> None:
        total = self._stats.hit_count + self._stats.miss_count
        self._stats.hit_rate = self._stats.hit_count / total if total else 0.0

    def _miss(self) -> None:
        self._stats.miss_count += 1
        self._update_hit_rate()

    def _evict_oldest(self) -> None:
        while len(self._entries) >= self._max_entries:
            oldest = min(self._entries.values(), key=lambda e: e.inserted_at)
            del self._entries[oldest.key]
            self._stats.eviction_count += 1
            logger.debug("Evicted %s from session cache", oldest.key)

    def get(
        self,
        key: MethodKey,
        fingerprint: str | None = None,
        oracle_identity: str | None = None,
    ) -> MethodAnalysis | None:
        """
        Return the memoized analysis for ``key``.

        When ``fingerprint`` / ``oracle_identity`` are given, an entry
        produced from different source content or by a different oracle
        is dropped and reported as a miss.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._miss()
            return None

        if self._is_expired(entry):
            del self._entries[key]
            self._miss()
            return None

        if fingerprint is not None and entry.fingerprint != fingerprint:
            logger.info("Source changed for %s, invalidating session cache entry", key)
            del self._entries[key]
            self._miss()
            return None

        if oracle_identity is not None and entry.oracle_identity != oracle_identity:
            logger.info(
                "Oracle changed for %s (%s -> %s), invalidating session cache entry",
                key, entry.oracle_identity, oracle_identity,
            )
            del self._entries[key]
            self._miss()
            return None

        entry.access_count += 1
        self._stats.hit_count += 1
        self._update_hit_rate()
        return entry.analysis

    def peek(self, key: MethodKey) -> MethodAnalysis | None:
        """Look up without validation or statistics (cycle handling)."""
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry):
            return None
        return entry.analysis

    def set(
        self,
        key: MethodKey,
        analysis: MethodAnalysis,
        fingerprint: str,
        oracle_identity: str,
    ) -> None:
        if key not in self._entries:
            self._evict_oldest()
        self._entries[key] = CacheEntry(
            key=key,
            analysis=analysis,
            inserted_at=self._clock(),
            fingerprint=fingerprint,
            oracle_identity=oracle_identity,
        )

    def invalidate(self, type_name: str, method_name: str | None = None) -> int:
        """Drop one method, or every method of ``type_name``. Returns count removed."""
        if method_name is not None:
            removed = 1 if self._entries.pop(MethodKey(type_name, method_name), None) else 0
        else:
            keys = [k for k in self._entries if k.type_name == type_name]
            for k in keys:
                del self._entries[k]
            removed = len(keys)
        return removed

    def cleanup(self) -> int:
        """Remove expired entries. Returns count removed."""
        expired = [k for k, e in self._entries.items() if self._is_expired(e)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self._stats = CacheStats()

    def record_analysis_time(self, elapsed_ms: float) -> None:
        stats = self._stats
        stats._timing_total_ms += elapsed_ms
        stats._timing_count += 1
        stats.average_analysis_ms = stats._timing_total_ms / stats._timing_count

    def get_stats(self) -> CacheStats:
        self._stats.total_entries = len(self._entries)
        return self._stats

    def get_size_info(self) -> dict:
        return {
            "entries": len(self._entries),
            "max_entries": self._max_entries,
            "utilization_percent": len(self._entries) / self._max_entries * 100,
        }

    def get_top_methods(self, limit: int = 10) -> list[dict]:
        """Most frequently reused analyses."""
        entries = sorted(self._entries.values(), key=lambda e: e.access_count, reverse=True)
        return [
            {"key": str(e.key), "access_count": e.access_count, "status": e.analysis.status}
            for e in entries[:limit]
        ]


class MethodAnalysisCache:
    """Two-tier facade used by the recursion controller."""

    def __init__(
        self,
        session_tier: SessionAnalysisCache | None = None,
        durable_tier: PersistentAnalysisCache | None = None,
    ):
        self.session_tier = session_tier or SessionAnalysisCache()
        self.durable_tier = durable_tier

    async def get(
        self,
        key: MethodKey,
        fingerprint: str,
        oracle_identity: str,
    ) -> MethodAnalysis | None:
        analysis = self.session_tier.get(key, fingerprint, oracle_identity)
        if analysis is not None:
            logger.debug("Session cache hit for %s", key)
            return analysis

        if self.durable_tier is None:
            return None

        analysis = await self.durable_tier.get(key, fingerprint, oracle_identity)
        if analysis is not None:
            logger.debug("Durable cache hit for %s", key)
            # Promote so later lookups in this process stay in memory
            self.session_tier.set(key, analysis, fingerprint, oracle_identity)
        return analysis

    async def set(
        self,
        key: MethodKey,
        analysis: MethodAnalysis,
        fingerprint: str,
        oracle_identity: str,
        source_path: str = "",
    ) -> None:
        self.session_tier.set(key, analysis, fingerprint, oracle_identity)
        if self.durable_tier is not None:
            await self.durable_tier.set(key, analysis, fingerprint, oracle_identity, source_path)

    def peek(self, key: MethodKey) -> MethodAnalysis | None:
        return self.session_tier.peek(key)

    async def invalidate(self, type_name: str, method_name: str | None = None) -> int:
        removed = self.session_tier.invalidate(type_name, method_name)
        if self.durable_tier is not None:
            removed += await self.durable_tier.invalidate(type_name, method_name)
        return removed

    async def clear(self) -> None:
        self.session_tier.clear()
        if self.durable_tier is not None:
            await self.durable_tier.clear()

    def record_analysis_time(self, elapsed_ms: float) -> None:
        self.session_tier.record_analysis_time(elapsed_ms)

    def get_stats(self) -> dict:
        stats = self.session_tier.get_stats().to_dict()
        stats["size"] = self.session_tier.get_size_info()
        stats["top_methods"] = self.session_tier.get_top_methods(5)
        if self.durable_tier is not None:
            stats["durable"] = self.durable_tier.get_stats()
        return stats
