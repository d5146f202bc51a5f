"""In-process store of proof-of-work access cookies, one per host.

Solving a challenge is expensive, so once a host issues an access cookie
every later fetch to that host reuses it until it expires. The store is
shared by all concurrent fetches and guarded by a single lock; operations
are O(1) and rare compared to network latency.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostCookie:
    host: str
    cookie_value: str
    expires_at: float  # Clock-relative, see HostChallengeCache.clock


def _normalize_host(host: str) -> str:
    return (host or "").strip().lower()


class HostChallengeCache:
    """Per-host access-cookie store with expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, HostCookie] = {}

    def get_cached_cookie(self, host: str) -> str:
        """Return the current valid cookie for host, or "" if none/expired."""
        key = _normalize_host(host)
        if not key:
            return ""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return ""
            if entry.expires_at <= self._clock():
                del self._entries[key]
                logger.debug(f"Challenge cookie expired for {key}")
                return ""
            return entry.cookie_value

    def set_cookie(self, host: str, cookie: str, ttl: float) -> None:
        """Store cookie for host, replacing any previous entry."""
        key = _normalize_host(host)
        if not key or not cookie:
            return
        with self._lock:
            self._entries[key] = HostCookie(
                host=key, cookie_value=cookie, expires_at=self._clock() + ttl
            )
        logger.debug(f"Challenge cookie cached for {key} (TTL={ttl:.0f}s)")

    def invalidate(self, host: str) -> None:
        with self._lock:
            self._entries.pop(_normalize_host(host), None)

    def __contains__(self, host: str) -> bool:
        return bool(self.get_cached_cookie(host))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
