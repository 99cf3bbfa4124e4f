from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketValidationError(TicketServiceError, ValueError):
    """Raised when a required field is missing, empty or not an allowed value."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"Field '{field}' is required")


class TicketNotFoundError(TicketServiceError):
    """Raised when an operation targets a non-existent ticket."""

    def __init__(self, ticket_id: str) -> None:
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} not found")


class TicketStorageError(TicketServiceError):
    """Raised when the persistence backend fails. Never retried internally."""
