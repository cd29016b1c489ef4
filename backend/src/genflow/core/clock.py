"""Monotonic write-time clock for ledger timestamps."""

import threading
from datetime import datetime, timedelta

from genflow.core.timezone import utcnow

_TICK = timedelta(microseconds=1)


class MonotonicClock:
    """Hands out strictly increasing UTC timestamps within one process.

    Wall clocks can step backwards (NTP adjustments); ledger ordering by
    created_at must not.
    """

    def __init__(self) -> None:
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = utcnow()
            if self._last is not None and current <= self._last:
                current = self._last + _TICK
            self._last = current
            return current


ledger_clock = MonotonicClock()
