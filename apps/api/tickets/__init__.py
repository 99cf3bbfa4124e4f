"""Ticket lifecycle, comment threads and SLA tracking."""

from .errors import TicketNotFoundError, TicketServiceError, TicketStorageError, TicketValidationError
from .models import Comment, Ticket, TicketPriority, TicketStatus
from .repository import InMemoryTicketRepository, SqlTicketRepository, TicketStore
from .service import TicketService, TicketView
from .sla import SLA_OFFSETS, SLAClassification, classify_sla, compute_deadline

__all__ = [
    "Comment",
    "InMemoryTicketRepository",
    "SLAClassification",
    "SLA_OFFSETS",
    "SqlTicketRepository",
    "Ticket",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketService",
    "TicketServiceError",
    "TicketStatus",
    "TicketStorageError",
    "TicketStore",
    "TicketValidationError",
    "TicketView",
    "classify_sla",
    "compute_deadline",
]
