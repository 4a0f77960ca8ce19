#!/usr/bin/env python3
"""
Bounded In-Process Cache

Capacity-bounded, TTL-aware key-value store with no external dependencies.
Used as the fallback store inside the resilient cache client and usable
standalone.

Semantics:
    - Insertion-order eviction (NOT LRU): when full and a new key arrives,
      the oldest-inserted key is dropped. Reads never reorder keys.
    - Lazy expiry: an expired entry is logically absent; the read that
      notices it deletes it. purge_expired() is an optional sweep.
    - TTL clamp: every entry expires within ``default_ttl`` seconds. The
      store bridges short outages and must not serve long-lived data.

Concurrency:
    Every method is synchronous and performs no I/O, so under asyncio each
    call runs to completion without interleaving with other tasks.

Author: System Architect
Date: 2025-12-08
"""

import math
import re
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from cacheguard.core.config.constants import FALLBACK_DEFAULT_TTL_SECONDS, FALLBACK_MAX_ENTRIES


@dataclass
class CacheEntry:
    """One cached value. ``expires_at`` is on the store's clock, None means no expiry."""

    value: str
    expires_at: float | None = None


class BoundedMemoryCache:
    """
    In-memory KV store mirroring the subset of Redis commands the app uses.

    Return conventions follow Redis: ttl() gives -2 for a missing key and -1
    for a key without expiry; exists() and expire() return 0 or 1.
    """

    def __init__(
        self,
        max_size: int = FALLBACK_MAX_ENTRIES,
        default_ttl: int = FALLBACK_DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_size: Maximum number of entries held at once
            default_ttl: TTL applied when none is given, and the upper bound
                for any requested TTL
            clock: Monotonic time source in seconds (overridable in tests)
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    def __len__(self) -> int:
        return len(self._store)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return entry.expires_at is not None and entry.expires_at <= now

    def _live_entry(self, key: str) -> CacheEntry | None:
        """Return the entry for ``key`` or None, evicting it if expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._store[key]
            return None
        return entry

    def _effective_ttl(self, ttl: int | None) -> int:
        if ttl:
            return min(ttl, self._default_ttl)
        return self._default_ttl

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        entry = self._live_entry(key)
        return entry.value if entry else None

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """
        Store ``value`` under ``key``.

        A missing or zero ``ttl`` means the default TTL; larger values are
        clamped to it. Overwriting a key keeps its insertion position.
        """
        if key not in self._store and len(self._store) >= self._max_size:
            self._store.popitem(last=False)

        expires_at = self._clock() + self._effective_ttl(ttl)
        entry = self._store.get(key)
        if entry is None:
            self._store[key] = CacheEntry(value=value, expires_at=expires_at)
        else:
            entry.value = value
            entry.expires_at = expires_at

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def mget(self, keys: Iterable[str]) -> list[str | None]:
        """One result per input key, in order, duplicates included."""
        return [self.get(key) for key in keys]

    def keys(self, pattern: str = "*") -> list[str]:
        """
        Return live keys matching a glob where ``*`` matches any substring.

        Every other character is matched literally.
        """
        regex = re.compile("^" + re.escape(pattern).replace(r"\*", ".*") + "$", re.DOTALL)
        now = self._clock()
        matched = []
        for key, entry in list(self._store.items()):
            if self._is_expired(entry, now):
                del self._store[key]
                continue
            if regex.match(key):
                matched.append(key)
        return matched

    def ttl(self, key: str) -> int:
        entry = self._store.get(key)
        if entry is None:
            return -2
        if entry.expires_at is None:
            return -1
        remaining = math.ceil(entry.expires_at - self._clock())
        if remaining <= 0:
            del self._store[key]
            return -2
        return remaining

    def incr(self, key: str) -> int:
        """
        Increment the integer stored at ``key``.

        Missing or non-numeric values count as 0. The remaining TTL of an
        existing key is preserved.
        """
        entry = self._live_entry(key)
        current = 0
        remaining_ttl: int | None = None
        if entry is not None:
            try:
                current = int(entry.value)
            except ValueError:
                current = 0
            if entry.expires_at is not None:
                remaining_ttl = max(1, math.ceil(entry.expires_at - self._clock()))

        new_value = current + 1
        self.set(key, str(new_value), remaining_ttl)
        return new_value

    def expire(self, key: str, seconds: int) -> int:
        """
        Re-arm an existing key with a fresh TTL, keeping its value.

        Returns 1 if the key existed, 0 otherwise.
        """
        entry = self._live_entry(key)
        if entry is None:
            return 0
        if seconds <= 0:
            # Redis deletes a key given a non-positive expiry.
            del self._store[key]
            return 1
        self.set(key, entry.value, seconds)
        return 1

    def exists(self, key: str) -> int:
        return 1 if self._live_entry(key) is not None else 0

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._store[key]
        return len(expired)

    def clear(self) -> None:
        self._store.clear()
