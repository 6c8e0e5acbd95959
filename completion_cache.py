import time
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional

import numpy as np

from context_descriptor import ContextDescriptor
from quality_gate import QualityGate
from similarity_calculator import ContextSimilarityCalculator
from logger_config import get_logger

logger = get_logger("completion.cache", "cache")

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_SECONDS = 300.0
DEFAULT_SIMILARITY_THRESHOLD = 0.8


@dataclass
class CacheEntry:
    """A memoized suggestion and the context it was produced for."""
    suggestion: str
    descriptor: ContextDescriptor
    created_at: float
    usage: int = 0

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at > ttl


class CacheStats(NamedTuple):
    total_entries: int
    expired_entries: int
    average_usage: float

    def to_dict(self) -> Dict[str, float]:
        return self._asdict()

    def __str__(self) -> str:
        return (f"Cache Stats: {self.total_entries} total, {self.expired_entries} expired, "
                f"{self.average_usage:.2f} avg usage")


class CompletionCache:
    """
    In-memory cache of inline completion suggestions.

    Entries are keyed by request fingerprint. A lookup that misses the exact
    key falls back to the most similar live entry when its context scores
    above the similarity threshold. Capacity is bounded with LRU eviction and
    entries expire after a fixed TTL.

    The entry mapping and the recency list are only touched while holding
    ``self._lock``, so they always describe the same set of fingerprints.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES,
                 ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
                 calculator: Optional[ContextSimilarityCalculator] = None,
                 quality_gate: Optional[QualityGate] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the CompletionCache.

        Args:
            max_entries: Maximum number of entries held at once
            ttl_seconds: Age in seconds after which an entry is expired
            similarity_threshold: Score a similar entry must exceed to be served
            calculator: Similarity scorer; default weights if None
            quality_gate: Suggestion filter; default rules if None
            clock: Time source returning seconds
        """
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be non-negative, got {ttl_seconds}")
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be in [0, 1], got {similarity_threshold}")

        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.similarity_threshold = similarity_threshold
        self.calculator = calculator if calculator is not None else ContextSimilarityCalculator()
        self.quality_gate = quality_gate if quality_gate is not None else QualityGate()
        self._clock = clock

        # fingerprint -> CacheEntry
        self._entries: Dict[str, CacheEntry] = {}
        self._access_order: List[str] = []  # For LRU eviction, most recent last

        self._counters = {
            "exact_hits": 0,
            "similar_hits": 0,
            "misses": 0,
            "stores": 0,
            "rejected_writes": 0,
            "evictions": 0,
            "expirations": 0,
            "invalidations": 0,
        }

        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config_manager, clock: Callable[[], float] = time.time) -> "CompletionCache":
        """Create a cache from the ``cache``, ``similarity_weights`` and ``quality_gate`` sections."""
        settings = config_manager.get_cache_settings()
        return cls(
            max_entries=int(settings["max_entries"]),
            ttl_seconds=float(settings["ttl_seconds"]),
            similarity_threshold=float(settings["similarity_threshold"]),
            calculator=ContextSimilarityCalculator(config_manager=config_manager),
            quality_gate=QualityGate.from_config(config_manager),
            clock=clock,
        )

    def _is_stale(self, entry: CacheEntry, descriptor: ContextDescriptor) -> Optional[str]:
        """Return why *entry* no longer fits *descriptor*, or None."""
        cached = entry.descriptor
        if cached.line_word_count != descriptor.line_word_count:
            return "line structure changed"
        if (cached.current_function != descriptor.current_function
                or cached.current_class != descriptor.current_class):
            return "function/class context changed"
        if not self.quality_gate.is_acceptable(entry.suggestion):
            return "cached suggestion has errors"
        return None

    def _remove(self, fingerprint: str) -> None:
        del self._entries[fingerprint]
        self._access_order.remove(fingerprint)

    def _touch(self, fingerprint: str) -> None:
        """Move *fingerprint* to the most-recently-used position."""
        if fingerprint in self._access_order:
            self._access_order.remove(fingerprint)
        self._access_order.append(fingerprint)

    def _evict_lru(self) -> None:
        if not self._access_order:
            return
        lru_key = self._access_order.pop(0)
        del self._entries[lru_key]
        self._counters["evictions"] += 1
        logger.debug(f"Cache EVICT (LRU): {lru_key}")

    def _cleanup_expired(self, now: float) -> int:
        expired_keys = [key for key, entry in self._entries.items()
                        if entry.is_expired(now, self.ttl_seconds)]
        for key in expired_keys:
            self._remove(key)

        if expired_keys:
            self._counters["expirations"] += len(expired_keys)
            logger.debug(f"Cache CLEANUP: Removed {len(expired_keys)} expired entries")
        return len(expired_keys)

    def _find_similar(self, descriptor: ContextDescriptor, now: float):
        """
        Scan live entries for the best-scoring context.

        Entries are visited in insertion order of the mapping; on equal
        scores the first one visited wins.

        Returns:
            Tuple of (fingerprint, entry, score), or None if nothing scores
            above the threshold
        """
        live = [(key, entry) for key, entry in self._entries.items()
                if not entry.is_expired(now, self.ttl_seconds)]
        if not live:
            return None

        scores = self.calculator.score_many(descriptor, (entry.descriptor for _, entry in live))
        # argmax returns the first of equal maxima
        best = int(np.argmax(scores))
        best_score = float(scores[best])
        if best_score <= self.similarity_threshold:
            return None
        key, entry = live[best]
        return key, entry, best_score

    def lookup(self, fingerprint: str, descriptor: ContextDescriptor) -> Optional[str]:
        """
        Get a cached suggestion for a request.

        Args:
            fingerprint: Exact-match key of the request
            descriptor: Context of the request

        Returns:
            The cached suggestion, or None on a miss
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(fingerprint)

            if entry is not None:
                reason = self._is_stale(entry, descriptor)
                if reason is not None:
                    self._remove(fingerprint)
                    self._counters["invalidations"] += 1
                    self._counters["misses"] += 1
                    logger.debug(f"Cache INVALIDATE: {reason} for key: {fingerprint}")
                    return None

                if not entry.is_expired(now, self.ttl_seconds):
                    entry.usage += 1
                    self._touch(fingerprint)
                    self._counters["exact_hits"] += 1
                    logger.debug(f"Cache HIT (exact): {fingerprint} -> '{entry.suggestion}'")
                    return entry.suggestion

            match = self._find_similar(descriptor, now)
            if match is not None:
                key, similar, similarity = match
                if self.quality_gate.is_acceptable(similar.suggestion):
                    self._counters["similar_hits"] += 1
                    logger.debug(f"Cache HIT (similar {similarity:.3f}): {key} -> '{similar.suggestion}'")
                    return similar.suggestion

            self._counters["misses"] += 1
            logger.debug(f"Cache MISS: {fingerprint}")
            return None

    def store(self, fingerprint: str, suggestion: str, descriptor: ContextDescriptor) -> bool:
        """
        Store a suggestion for a request.

        Suggestions rejected by the quality gate are silently dropped.

        Args:
            fingerprint: Exact-match key of the request
            suggestion: Suggestion text
            descriptor: Context the suggestion was produced for

        Returns:
            True if the suggestion was stored
        """
        if not self.quality_gate.is_acceptable(suggestion):
            with self._lock:
                self._counters["rejected_writes"] += 1
            logger.debug(f"Cache SKIP: Not caching problematic suggestion: '{suggestion}'")
            return False

        with self._lock:
            now = self._clock()
            self._cleanup_expired(now)

            if fingerprint not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_lru()

            self._entries[fingerprint] = CacheEntry(suggestion, descriptor, created_at=now)
            self._touch(fingerprint)
            self._counters["stores"] += 1
            logger.debug(f"Cache STORE: {fingerprint} -> '{suggestion}' (cache size: {len(self._entries)})")
            return True

    def invalidate_all(self) -> int:
        """Clear all cache entries. Returns the number removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            self._access_order.clear()
            self._counters["invalidations"] += removed
        logger.info(f"Cache INVALIDATED: All {removed} entries cleared")
        return removed

    def invalidate_by_pattern(self, pattern: str) -> int:
        """
        Remove every entry whose fingerprint contains *pattern*.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys_to_remove = [key for key in self._entries if pattern in key]
            for key in keys_to_remove:
                self._remove(key)
            self._counters["invalidations"] += len(keys_to_remove)
        logger.info(f"Cache INVALIDATE by pattern '{pattern}': Removed {len(keys_to_remove)} entries")
        return len(keys_to_remove)

    def stats(self) -> CacheStats:
        """Entry count, expired count and mean usage. Does not modify the cache."""
        with self._lock:
            now = self._clock()
            entries = list(self._entries.values())
            total = len(entries)
            expired = sum(1 for entry in entries if entry.is_expired(now, self.ttl_seconds))
            average_usage = sum(entry.usage for entry in entries) / total if total else 0.0
        return CacheStats(total, expired, average_usage)

    def metrics(self) -> Dict[str, float]:
        """Operation counters accumulated since creation."""
        with self._lock:
            counters = dict(self._counters)
        hits = counters["exact_hits"] + counters["similar_hits"]
        lookups = hits + counters["misses"]
        counters["hit_rate"] = hits / lookups if lookups else 0.0
        return counters

    def keys_by_recency(self) -> List[str]:
        """Fingerprints from least to most recently used."""
        with self._lock:
            return list(self._access_order)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._entries
