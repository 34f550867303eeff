from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional

from config import get_settings


logger = logging.getLogger(__name__)

ALL_TIME = "all"
HISTORY = "history"


def month_scope(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


class BalanceCache:
    """Keyed TTL + LRU memo for computed balances.

    Keys are ``(user_id, scope)``. Reads do not refresh an entry's age.
    Instances are independent; the app keeps one per process.
    """

    def __init__(
        self,
        ttl_secs: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.ttl_secs = settings.cache_ttl_secs if ttl_secs is None else ttl_secs
        self.max_entries = (
            settings.cache_max_entries if max_entries is None else max_entries
        )
        self._clock = clock
        self._entries: "OrderedDict[tuple[Hashable, str], tuple[float, Any]]" = (
            OrderedDict()
        )
        self._lock = threading.Lock()

    def get(self, user_id: Hashable, scope: str = ALL_TIME) -> Optional[Any]:
        key = (user_id, scope)
        now = self._clock()
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                logger.debug(f"balance_cache_miss: key={key}")
                return None
            expires_at, value = item
            if now >= expires_at:
                del self._entries[key]
                logger.debug(f"balance_cache_expired: key={key}")
                return None
            self._entries.move_to_end(key)
        logger.debug(f"balance_cache_hit: key={key}")
        return value

    def set(self, user_id: Hashable, scope: str, value: Any) -> None:
        key = (user_id, scope)
        expires_at = self._clock() + self.ttl_secs
        with self._lock:
            self._entries[key] = (expires_at, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"balance_cache_evicted: key={evicted}")

    def invalidate_user(self, user_id: Hashable) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[0] == user_id]
            for key in stale:
                del self._entries[key]
        logger.debug(f"balance_cache_invalidated: user={user_id} entries={len(stale)}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("balance_cache_cleared")

    def stats(self) -> dict[str, Any]:
        with self._lock:
            size = len(self._entries)
        return {"size": size, "max": self.max_entries, "ttl_secs": self.ttl_secs}
