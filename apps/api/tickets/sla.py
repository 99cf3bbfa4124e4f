"""SLA policy: priority based deadlines and read-time SLA classification."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .models import Ticket, TicketPriority

SLA_OFFSETS: Mapping[TicketPriority, timedelta] = MappingProxyType(
    {
        TicketPriority.CRITICAL: timedelta(hours=1),
        TicketPriority.HIGH: timedelta(hours=4),
        TicketPriority.MEDIUM: timedelta(hours=8),
        TicketPriority.LOW: timedelta(hours=24),
    }
)
DEFAULT_SLA_OFFSET = SLA_OFFSETS[TicketPriority.MEDIUM]

# Remaining time below which an open ticket is flagged as critical.
CRITICAL_WINDOW = timedelta(hours=1)


class SLAClassification(str, Enum):
    """Derived SLA health label. Computed on read, never stored."""

    MET = "Met"
    BREACHED = "Breached"
    CRITICAL = "Critical"
    ON_TRACK = "On Track"


def sla_offset(priority: TicketPriority | str | None) -> timedelta:
    """Return the deadline offset for ``priority``.

    Unrecognised values fall back to the Medium offset rather than failing.
    """

    member = TicketPriority.parse(priority) if priority is not None else None
    if member is None:
        return DEFAULT_SLA_OFFSET
    return SLA_OFFSETS.get(member, DEFAULT_SLA_OFFSET)


def compute_deadline(priority: TicketPriority | str | None, created_at: datetime) -> datetime:
    """Absolute SLA deadline for a ticket created at ``created_at``."""

    return created_at + sla_offset(priority)


def classify_sla(ticket: Ticket, now: datetime) -> SLAClassification:
    if ticket.status.is_terminal:
        return SLAClassification.MET
    if now > ticket.sla_deadline:
        return SLAClassification.BREACHED
    if ticket.sla_deadline - now < CRITICAL_WINDOW:
        return SLAClassification.CRITICAL
    return SLAClassification.ON_TRACK


def time_remaining(deadline: datetime, now: datetime) -> timedelta:
    """Signed time left until ``deadline``; negative once overdue."""

    return deadline - now


def describe_time_remaining(deadline: datetime, now: datetime) -> str:
    """Human readable countdown such as ``"3h 12m left"`` or ``"Overdue by 0h 5m"``."""

    remaining = time_remaining(deadline, now)
    total_minutes = int(abs(remaining).total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if remaining < timedelta(0):
        return f"Overdue by {hours}h {minutes}m"
    return f"{hours}h {minutes}m left"
