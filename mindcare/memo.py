"""
Request memoization for dashboard widgets.

Dashboard cards re-query on a fixed interval rather than on every Streamlit rerun.
`RequestMemo` keeps each widget's last result for `ttl_seconds`; failed fetches are
not cached so the next rerun tries again.
"""
# mindcare/memo.py

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Hashable, Optional, Tuple


class RequestMemo:
    """A small time-based cache keyed by request."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, object]] = {}
        self._lock = threading.Lock()

    def get_or_fetch(self, key: Hashable, fetch: Callable[[], object], ttl_seconds: Optional[float] = None):
        """Returns the cached value for `key`, calling `fetch` when it is missing or expired."""
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry[0] < ttl:
                return entry[1]
        value = fetch()
        with self._lock:
            self._entries[key] = (self._clock(), value)
        return value

    def invalidate(self, prefix: Optional[str] = None) -> None:
        """Drops every entry, or those whose key (or first key element) starts with `prefix`."""
        with self._lock:
            if prefix is None:
                self._entries.clear()
                return
            for key in list(self._entries):
                head = key[0] if isinstance(key, tuple) and key else key
                if isinstance(head, str) and head.startswith(prefix):
                    del self._entries[key]
