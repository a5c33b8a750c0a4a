from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Millisecond clock abstraction.

    Session logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> int:
        """Return integer milliseconds."""


class RealClock:
    """Production clock backed by time.time().

    Event timestamps are persisted and replayed across restarts, so this reads
    wall-clock epoch milliseconds rather than a per-process monotonic counter.
    """

    def now(self) -> int:
        return int(time.time() * 1000)
