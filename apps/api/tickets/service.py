from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from opentelemetry import trace

from apps.api.services.identity import IdentityDirectory, IdentityLookupError, IdentityProfile

from .errors import TicketNotFoundError, TicketValidationError
from .models import MUTABLE_FIELDS, Comment, Ticket, TicketPriority, TicketStatus, utcnow
from .repository import TicketStore
from .sla import SLAClassification, classify_sla, compute_deadline

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class TicketView:
    """Ticket joined with display data for the identities it references."""

    ticket: Ticket
    created_by: IdentityProfile | None = None
    assigned_to: IdentityProfile | None = None


def _require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise TicketValidationError(field)
    return value


def _resolve_priority(value: TicketPriority | str | None) -> TicketPriority:
    if value is None or (isinstance(value, str) and not value.strip()):
        return TicketPriority.MEDIUM
    priority = TicketPriority.parse(value)
    if priority is None:
        raise TicketValidationError("priority", f"Invalid priority: {value!r}")
    return priority


def _resolve_status(value: TicketStatus | str) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError as exc:
        raise TicketValidationError("status", f"Invalid status: {value!r}") from exc


class TicketService:
    """High level orchestration for ticket CRUD, comments and SLA tracking."""

    def __init__(
        self,
        store: TicketStore,
        *,
        clock: Clock | None = None,
        directory: IdentityDirectory | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or utcnow
        self._directory = directory

    @property
    def store(self) -> TicketStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    async def create_ticket(
        self,
        *,
        identity: str,
        title: str,
        description: str,
        priority: TicketPriority | str | None = None,
    ) -> Ticket:
        title = _require_text("title", title)
        description = _require_text("description", description)
        resolved_priority = _resolve_priority(priority)

        now = self.now()
        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            status=TicketStatus.OPEN,
            priority=resolved_priority,
            created_by=identity,
            assigned_to=None,
            sla_deadline=compute_deadline(resolved_priority, now),
            created_at=now,
            updated_at=now,
        )
        with tracer.start_as_current_span("tickets.create") as span:
            span.set_attribute("ticket.id", ticket.id)
            span.set_attribute("ticket.priority", resolved_priority.value)
            await self._store.create(ticket)
        logger.info(
            "Ticket %s created by %s with priority %s, SLA deadline %s",
            ticket.id,
            identity,
            resolved_priority.value,
            ticket.sla_deadline.isoformat(),
        )
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._store.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def list_tickets(self) -> list[Ticket]:
        return await self._store.list_all()

    async def update_ticket(self, ticket_id: str, changes: Mapping[str, Any]) -> Ticket:
        """Apply the patchable keys present in ``changes``.

        Keys outside the patchable set (creator, SLA deadline, timestamps,
        comments) are dropped without error. ``assigned_to=None`` clears the
        assignment; an empty title or description is rejected.
        """

        accepted: dict[str, Any] = {}
        for field, value in changes.items():
            if field not in MUTABLE_FIELDS:
                logger.debug("Ignoring non-patchable field %r for ticket %s", field, ticket_id)
                continue
            accepted[field] = self._coerce_change(field, value)

        with tracer.start_as_current_span("tickets.update") as span:
            span.set_attribute("ticket.id", ticket_id)
            updated = await self._store.update(ticket_id, accepted, self.now())
        if updated is None:
            raise TicketNotFoundError(ticket_id)
        logger.info("Ticket %s updated fields: %s", ticket_id, ", ".join(sorted(accepted)) or "none")
        return updated

    async def add_comment(self, ticket_id: str, *, identity: str, display_name: str, text: str) -> Ticket:
        text = _require_text("text", text)
        comment = Comment(
            id=str(uuid.uuid4()),
            author_id=identity,
            author_name=display_name or identity,
            text=text,
            created_at=self.now(),
        )
        with tracer.start_as_current_span("tickets.add_comment") as span:
            span.set_attribute("ticket.id", ticket_id)
            updated = await self._store.append_comment(ticket_id, comment, comment.created_at)
        if updated is None:
            raise TicketNotFoundError(ticket_id)
        logger.info("Comment %s added to ticket %s by %s", comment.id, ticket_id, identity)
        return updated

    async def delete_ticket(self, ticket_id: str) -> None:
        with tracer.start_as_current_span("tickets.delete") as span:
            span.set_attribute("ticket.id", ticket_id)
            deleted = await self._store.delete(ticket_id)
        if not deleted:
            raise TicketNotFoundError(ticket_id)
        logger.info("Ticket %s deleted", ticket_id)

    async def get_ticket_view(self, ticket_id: str) -> TicketView:
        return await self.describe(await self.get_ticket(ticket_id))

    async def list_ticket_views(self) -> list[TicketView]:
        return await self._decorate(await self.list_tickets())

    async def describe(self, ticket: Ticket) -> TicketView:
        views = await self._decorate([ticket])
        return views[0]

    def classify(self, ticket: Ticket, now: datetime | None = None) -> SLAClassification:
        return classify_sla(ticket, now or self.now())

    async def sla_summary(self, now: datetime | None = None) -> dict[SLAClassification, int]:
        moment = now or self.now()
        counts = Counter(classify_sla(ticket, moment) for ticket in await self.list_tickets())
        return {classification: counts.get(classification, 0) for classification in SLAClassification}

    async def _decorate(self, tickets: Sequence[Ticket]) -> list[TicketView]:
        if self._directory is None or not tickets:
            return [TicketView(ticket=ticket) for ticket in tickets]

        identity_ids = {ticket.created_by for ticket in tickets}
        identity_ids.update(ticket.assigned_to for ticket in tickets if ticket.assigned_to)
        try:
            profiles = await self._directory.lookup(identity_ids)
        except IdentityLookupError:
            # Profiles are display data only; the ticket itself is already stored.
            logger.warning("Identity lookup failed; returning %d ticket(s) without profiles", len(tickets))
            profiles = {}
        return [
            TicketView(
                ticket=ticket,
                created_by=profiles.get(ticket.created_by),
                assigned_to=profiles.get(ticket.assigned_to) if ticket.assigned_to else None,
            )
            for ticket in tickets
        ]

    @staticmethod
    def _coerce_change(field: str, value: Any) -> Any:
        if field in ("title", "description"):
            return _require_text(field, value)
        if field == "status":
            return _resolve_status(value)
        if field == "priority":
            if value is None or (isinstance(value, str) and not value.strip()):
                raise TicketValidationError("priority", "Priority cannot be cleared")
            return _resolve_priority(value)
        if field == "assigned_to":
            if value is None:
                return None
            return _require_text(field, value)
        raise TicketValidationError(field, f"Field '{field}' cannot be updated")
