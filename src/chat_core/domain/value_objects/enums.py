from __future__ import annotations

from enum import StrEnum


class MessageStatus(StrEnum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def can_advance_to(self, target: MessageStatus) -> bool:
        """Only strictly forward transitions are allowed."""
        return target.rank > self.rank

    def lower(self) -> list[MessageStatus]:
        return [s for s in MessageStatus if s.rank < self.rank]


_STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class FrameType(StrEnum):
    SYNC = "sync"
    EVENT = "event"
    ERROR = "error"


class EventKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    JOIN = "join"
    LEAVE = "leave"


class NotificationType(StrEnum):
    MESSAGE = "message"


class SendState(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
