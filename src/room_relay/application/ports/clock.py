from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """UTC wall clock at millisecond precision.

    Browser clients stamp messages with millisecond timestamps; matching
    that keeps server-minted ``createdAt`` values comparable to theirs.
    """

    def now(self) -> datetime:
        now = datetime.now(timezone.utc)
        return now.replace(microsecond=now.microsecond - now.microsecond % 1000)
