from __future__ import annotations

from enum import StrEnum


class MessageStatus(StrEnum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def advance(self, other: MessageStatus) -> MessageStatus:
        """Return whichever of the two statuses is further along."""
        return other if other.rank > self.rank else self


_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class LocalStatus(StrEnum):
    """Status as seen by the authoring client, including optimistic states."""

    SENDING = "sending"
    FAILED = "failed"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _LOCAL_RANK[self]


_LOCAL_RANK = {
    LocalStatus.SENDING: 0,
    LocalStatus.FAILED: 0,
    LocalStatus.SENT: 1,
    LocalStatus.DELIVERED: 2,
    LocalStatus.READ: 3,
}
