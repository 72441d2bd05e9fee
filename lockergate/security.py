from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict, Optional


class _Misses:
    __slots__ = ("stamps", "blocked_until")

    def __init__(self) -> None:
        self.stamps: Deque[float] = deque()
        self.blocked_until = 0.0

    def idle(self, now: float) -> bool:
        return not self.stamps and self.blocked_until <= now


class CodeGuessLimiter:
    """Locks a client out of scanning after too many codes that match no session.

    Only misses count. A scan of an expired or already used code is an ordinary
    outcome for a real customer and never moves a client towards lockout.
    Process-local; it slows guessing and does not replace the single-use claim.
    """

    def __init__(
        self,
        *,
        max_misses: int = 20,
        window_seconds: int = 60,
        lockout_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_misses = max(1, max_misses)
        self._window = window_seconds
        self._lockout = lockout_seconds
        self._clock = clock
        self._clients: Dict[str, _Misses] = {}
        self._next_sweep = 0.0
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def retry_after(self, client: str) -> int:
        """Seconds until ``client`` may scan again; 0 when it is not locked out."""
        now = self._clock()
        with self._lock:
            self._sweep(now)
            misses = self._current(client, now)
            if misses is None or misses.blocked_until <= now:
                return 0
            return max(1, math.ceil(misses.blocked_until - now))

    def record_miss(self, client: str) -> None:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            misses = self._current(client, now) or self._clients.setdefault(client, _Misses())
            misses.stamps.append(now)
            if len(misses.stamps) >= self._max_misses:
                misses.stamps.clear()
                misses.blocked_until = now + self._lockout

    def forget(self, client: str) -> None:
        with self._lock:
            self._clients.pop(client, None)

    def reset(self) -> None:
        with self._lock:
            self._clients.clear()
            self._next_sweep = 0.0

    def _current(self, client: str, now: float) -> Optional[_Misses]:
        misses = self._clients.get(client)
        if misses is None:
            return None
        self._expire(misses, now)
        if misses.idle(now):
            del self._clients[client]
            return None
        return misses

    def _expire(self, misses: _Misses, now: float) -> None:
        horizon = now - self._window
        while misses.stamps and misses.stamps[0] < horizon:
            misses.stamps.popleft()

    def _sweep(self, now: float) -> None:
        # one full pass per window keeps clients that never return from piling up
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._window
        for client in list(self._clients):
            self._current(client, now)
