"""
cache/store.py -- In-memory TTL cache for in-flight WebAuthn ceremonies.

Holds the challenge issued by a ceremony start until the client comes back
with the signed response. Keys are (identifier, ceremony kind) tuples; values
are whatever the ceremony controller needs to validate the response.

Expiry is access-based: every successful read pushes the deadline out by
another `ttl` seconds, so a ceremony stays alive while the user is still
interacting with it. An abandoned ceremony is dropped on the next read or by
purge_expired(), which api/main.py runs from a background task.

Thread safety: route handlers may run in the event loop or in the threadpool.
All access to the map goes through one lock. put() is last-writer-wins.

Usage:
    cache = ChallengeCache(ttl=300)
    cache.put(("alice", "REGISTRATION"), challenge)
    challenge = cache.take_if_present(("alice", "REGISTRATION"))  # or None
    challenge = cache.pop(("alice", "REGISTRATION"))  # single use
    cache.purge_expired()
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable
from typing import Any, Optional

logger = logging.getLogger("authgate.cache")

_DEFAULT_TTL = 5 * 60  # 5 minutes in seconds


class ChallengeCache:
    def __init__(self, ttl: float = _DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def put(self, key: Hashable, value: Any) -> None:
        """Store value under key, replacing any existing entry."""
        with self._lock:
            self._entries[key] = (value, self._clock() + self.ttl)

    def take_if_present(self, key: Hashable) -> Optional[Any]:
        """Return the live value for key, or None.

        The entry is not removed; its deadline is reset. Validation uses pop().
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            self._entries[key] = (value, now + self.ttl)
            return value

    def pop(self, key: Hashable) -> Optional[Any]:
        """Remove and return the live value for key, or None.

        Two callers racing on one key cannot both get the value.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None or now >= entry[1]:
            return None
        return entry[0]

    def restore(self, key: Hashable, value: Any) -> None:
        """Put a popped value back unless a newer put() has taken its place."""
        with self._lock:
            self._entries.setdefault(key, (value, self._clock() + self.ttl))

    def purge_expired(self) -> int:
        """Delete all entries past their deadline. Returns number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("Purged %d expired ceremony challenges", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
