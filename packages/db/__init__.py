"""Database models and utilities."""

from .models import TicketCommentTable, TicketTable, UserTable

__all__ = [
    "TicketCommentTable",
    "TicketTable",
    "UserTable",
]
