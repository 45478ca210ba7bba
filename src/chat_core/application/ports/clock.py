from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of timezone-aware UTC timestamps.

    Injected wherever ages are compared (typing staleness, presence
    last-seen, status stamps) so tests can move time by hand.
    """

    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
