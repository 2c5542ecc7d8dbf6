from __future__ import annotations

from typing import Protocol


class FanoutPublisher(Protocol):
    """Publishes one already-encoded fan-out envelope to every relay process."""

    async def publish(self, raw: str) -> None: ...
