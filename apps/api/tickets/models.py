from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class TicketStatus(str, Enum):
    """Lifecycle states of a ticket. Any state may be set by an update."""

    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.RESOLVED, TicketStatus.CLOSED)


class TicketPriority(str, Enum):
    """Ticket priorities, each mapped to an SLA offset."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @classmethod
    def parse(cls, value: "TicketPriority | str") -> "TicketPriority | None":
        """Return the matching member (case-insensitive) or ``None``."""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return None


@dataclass(frozen=True, slots=True)
class Comment:
    """Message appended to a ticket's thread.

    ``author_name`` is captured when the comment is written and is not
    refreshed if the author later changes their display name.
    """

    id: str
    author_id: str
    author_name: str
    text: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Ticket:
    """Aggregate representing a support ticket and its comment thread."""

    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    created_by: str
    assigned_to: str | None
    sla_deadline: datetime
    created_at: datetime
    updated_at: datetime
    comments: tuple[Comment, ...] = ()


# Columns an update may touch; everything else on a ticket is write-once.
MUTABLE_FIELDS: frozenset[str] = frozenset({"title", "description", "status", "priority", "assigned_to"})


def utcnow() -> datetime:
    """Default clock: the current timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)
