"""Expiring store for provider-side cached context handles.

Keyed by (user id, character slug). Each entry remembers the hash of the
prompt it was built from; a lookup with a different hash, or after expiry,
is a miss. Concurrent turns may both populate the same key; last write
wins, there is no lock.
"""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_TTL_SECONDS = 55 * 60


def content_hash(*parts: str) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


@dataclass
class CacheEntry:
    content_hash: str
    handle: str
    expires_at: float


class ContextCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], CacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: tuple[str, str], digest: str) -> str | None:
        """Return the handle for key if it is fresh and was built from digest."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock() or entry.content_hash != digest:
            self._entries.pop(key, None)
            return None
        return entry.handle

    def put(self, key: tuple[str, str], digest: str, handle: str) -> None:
        self._entries[key] = CacheEntry(
            content_hash=digest, handle=handle, expires_at=self._clock() + self._ttl
        )

    def __len__(self) -> int:
        return len(self._entries)
