"""Advisory tracking of translation work currently running in this process."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict

CLEANUP_INTERVAL = 60.0
MAX_AGE = 5 * 60.0


class InFlightStore:
    """Map of ``site:lang:hash`` keys to the time their work started.

    Stale entries are swept lazily from :meth:`is_in_flight` and
    :meth:`set_in_flight` once ``cleanup_interval`` has passed since the last
    sweep. This only reduces duplicate calls inside one process; it is not a
    lock across instances.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: float = CLEANUP_INTERVAL,
        max_age: float = MAX_AGE,
    ) -> None:
        self._clock = clock
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.cleanup_interval = cleanup_interval
        self.max_age = max_age
        self._last_sweep = clock()

    @staticmethod
    def build(site_id: int | str, lang: str, text_hash: str) -> str:
        return f"{site_id}:{lang}:{text_hash}"

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            self._maybe_sweep()
            return key in self._entries

    def set_in_flight(self, key: str) -> None:
        with self._lock:
            self._maybe_sweep()
            self._entries[key] = self._clock()

    def claim(self, key: str) -> bool:
        """Atomically mark ``key`` as in flight; False if it already was."""

        with self._lock:
            self._maybe_sweep()
            if key in self._entries:
                return False
            self._entries[key] = self._clock()
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._last_sweep = self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if now - self._last_sweep <= self.cleanup_interval:
            return
        self._last_sweep = now
        cutoff = now - self.max_age
        for key in [key for key, started in self._entries.items() if started < cutoff]:
            del self._entries[key]
