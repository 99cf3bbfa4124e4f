from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Mapping, Protocol, Sequence

from sqlalchemy import delete, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import TicketCommentTable, TicketTable

from .errors import TicketStorageError, TicketValidationError
from .models import MUTABLE_FIELDS, Comment, Ticket, TicketPriority, TicketStatus

logger = logging.getLogger(__name__)


class TicketStore(Protocol):
    """Persistence contract for tickets and their embedded comment threads.

    Every mutation is atomic with respect to a single ticket id.
    """

    async def create(self, ticket: Ticket) -> str:
        ...

    async def get(self, ticket_id: str) -> Ticket | None:
        ...

    async def list_all(self) -> list[Ticket]:
        ...

    async def update(self, ticket_id: str, changes: Mapping[str, Any], updated_at: datetime) -> Ticket | None:
        ...

    async def append_comment(self, ticket_id: str, comment: Comment, updated_at: datetime) -> Ticket | None:
        ...

    async def delete(self, ticket_id: str) -> bool:
        ...

    async def ping(self) -> bool:
        ...


def validate_new_ticket(ticket: Ticket) -> None:
    """Reject tickets that would violate the stored invariants."""

    if not isinstance(ticket.title, str) or not ticket.title.strip():
        raise TicketValidationError("title")
    if not isinstance(ticket.description, str) or not ticket.description.strip():
        raise TicketValidationError("description")
    if not isinstance(ticket.priority, TicketPriority):
        raise TicketValidationError("priority", f"Invalid priority: {ticket.priority!r}")
    if not isinstance(ticket.status, TicketStatus):
        raise TicketValidationError("status", f"Invalid status: {ticket.status!r}")
    if not ticket.created_by:
        raise TicketValidationError("created_by")


def _mutable_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in changes.items() if key in MUTABLE_FIELDS}


def _touch(updated_at: datetime, created_at: datetime) -> datetime:
    return updated_at if updated_at >= created_at else created_at


class InMemoryTicketRepository:
    """Process local store serialising mutations with one lock per ticket."""

    def __init__(self, tickets: Sequence[Ticket] | None = None) -> None:
        self._tickets: dict[str, Ticket] = {ticket.id: ticket for ticket in tickets or ()}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, ticket_id: str) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = self._locks[ticket_id] = asyncio.Lock()
        return lock

    async def create(self, ticket: Ticket) -> str:
        validate_new_ticket(ticket)
        async with self._lock_for(ticket.id):
            if ticket.id in self._tickets:
                raise TicketValidationError("id", f"Ticket {ticket.id} already exists")
            self._tickets[ticket.id] = replace(ticket, comments=tuple(ticket.comments))
        return ticket.id

    async def get(self, ticket_id: str) -> Ticket | None:
        return self._tickets.get(ticket_id)

    async def list_all(self) -> list[Ticket]:
        return sorted(self._tickets.values(), key=lambda ticket: ticket.created_at, reverse=True)

    async def update(self, ticket_id: str, changes: Mapping[str, Any], updated_at: datetime) -> Ticket | None:
        if ticket_id not in self._tickets:
            return None
        async with self._lock_for(ticket_id):
            current = self._tickets.get(ticket_id)
            if current is None:
                return None
            updated = replace(
                current,
                **_mutable_changes(changes),
                updated_at=_touch(updated_at, current.created_at),
            )
            self._tickets[ticket_id] = updated
            return updated

    async def append_comment(self, ticket_id: str, comment: Comment, updated_at: datetime) -> Ticket | None:
        if ticket_id not in self._tickets:
            return None
        async with self._lock_for(ticket_id):
            current = self._tickets.get(ticket_id)
            if current is None:
                return None
            updated = replace(
                current,
                comments=(*current.comments, comment),
                updated_at=_touch(updated_at, current.created_at),
            )
            self._tickets[ticket_id] = updated
            return updated

    async def delete(self, ticket_id: str) -> bool:
        if ticket_id not in self._tickets:
            return False
        async with self._lock_for(ticket_id):
            removed = self._tickets.pop(ticket_id, None)
        self._locks.pop(ticket_id, None)
        return removed is not None

    async def ping(self) -> bool:
        return True


class SqlTicketRepository:
    """Persistence helper wrapping the `tickets` and `ticket_comments` tables.

    Mutations lock the ticket row (``SELECT ... FOR UPDATE``) inside a single
    transaction, so concurrent updates and comment appends on one ticket are
    serialised by the database while different tickets proceed independently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Ticket storage failure while trying to %s", action)
            raise TicketStorageError(f"Failed to {action}") from exc

    async def ping(self) -> bool:
        async with self._session("ping storage") as session:
            await session.execute(text("SELECT 1"))
        return True

    async def create(self, ticket: Ticket) -> str:
        validate_new_ticket(ticket)
        async with self._session("create ticket") as session:
            async with session.begin():
                session.add(
                    TicketTable(
                        id=ticket.id,
                        title=ticket.title,
                        description=ticket.description,
                        status=ticket.status.value,
                        priority=ticket.priority.value,
                        created_by=ticket.created_by,
                        assigned_to=ticket.assigned_to,
                        sla_deadline=ticket.sla_deadline,
                        created_at=ticket.created_at,
                        updated_at=ticket.updated_at,
                    )
                )
                for position, comment in enumerate(ticket.comments):
                    session.add(self._comment_to_table(ticket.id, position, comment))
        return ticket.id

    async def get(self, ticket_id: str) -> Ticket | None:
        async with self._session("load ticket") as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            comments = await self._load_comments(session, ticket_id)
        return self._table_to_ticket(row, comments)

    async def list_all(self) -> list[Ticket]:
        async with self._session("list tickets") as session:
            result = await session.execute(select(TicketTable).order_by(TicketTable.created_at.desc()))
            rows = list(result.scalars().all())
            threads: dict[str, list[Comment]] = {row.id: [] for row in rows}
            if threads:
                comment_result = await session.execute(
                    select(TicketCommentTable)
                    .where(TicketCommentTable.ticket_id.in_(list(threads)))
                    .order_by(TicketCommentTable.ticket_id, TicketCommentTable.position.asc())
                )
                for comment_row in comment_result.scalars().all():
                    threads[comment_row.ticket_id].append(self._table_to_comment(comment_row))
        return [self._table_to_ticket(row, tuple(threads[row.id])) for row in rows]

    async def update(self, ticket_id: str, changes: Mapping[str, Any], updated_at: datetime) -> Ticket | None:
        async with self._session("update ticket") as session:
            async with session.begin():
                row = await self._lock_ticket(session, ticket_id)
                if row is None:
                    return None
                for field, value in _mutable_changes(changes).items():
                    setattr(row, field, value.value if isinstance(value, Enum) else value)
                row.updated_at = _touch(updated_at, _ensure_datetime(row.created_at))
                comments = await self._load_comments(session, ticket_id)
                ticket = self._table_to_ticket(row, comments)
        return ticket

    async def append_comment(self, ticket_id: str, comment: Comment, updated_at: datetime) -> Ticket | None:
        async with self._session("append comment") as session:
            async with session.begin():
                row = await self._lock_ticket(session, ticket_id)
                if row is None:
                    return None
                result = await session.execute(
                    select(func.max(TicketCommentTable.position)).where(TicketCommentTable.ticket_id == ticket_id)
                )
                last_position = result.scalar()
                position = 0 if last_position is None else int(last_position) + 1
                session.add(self._comment_to_table(ticket_id, position, comment))
                row.updated_at = _touch(updated_at, _ensure_datetime(row.created_at))
                await session.flush()
                comments = await self._load_comments(session, ticket_id)
                ticket = self._table_to_ticket(row, comments)
        return ticket

    async def delete(self, ticket_id: str) -> bool:
        async with self._session("delete ticket") as session:
            async with session.begin():
                row = await self._lock_ticket(session, ticket_id)
                if row is None:
                    return False
                await session.execute(delete(TicketCommentTable).where(TicketCommentTable.ticket_id == ticket_id))
                await session.delete(row)
        return True

    @staticmethod
    async def _lock_ticket(session: AsyncSession, ticket_id: str) -> TicketTable | None:
        result = await session.execute(select(TicketTable).where(TicketTable.id == ticket_id).with_for_update())
        return result.scalars().first()

    async def _load_comments(self, session: AsyncSession, ticket_id: str) -> tuple[Comment, ...]:
        result = await session.execute(
            select(TicketCommentTable)
            .where(TicketCommentTable.ticket_id == ticket_id)
            .order_by(TicketCommentTable.position.asc())
        )
        return tuple(self._table_to_comment(row) for row in result.scalars().all())

    @staticmethod
    def _comment_to_table(ticket_id: str, position: int, comment: Comment) -> TicketCommentTable:
        return TicketCommentTable(
            id=comment.id,
            ticket_id=ticket_id,
            position=position,
            author_id=comment.author_id,
            author_name=comment.author_name,
            text=comment.text,
            created_at=comment.created_at,
        )

    @staticmethod
    def _table_to_ticket(row: TicketTable, comments: tuple[Comment, ...]) -> Ticket:
        return Ticket(
            id=row.id,
            title=row.title,
            description=row.description,
            status=TicketStatus(row.status),
            priority=TicketPriority(row.priority),
            created_by=row.created_by,
            assigned_to=row.assigned_to,
            sla_deadline=_ensure_datetime(row.sla_deadline),
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            comments=comments,
        )

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> Comment:
        return Comment(
            id=row.id,
            author_id=row.author_id,
            author_name=row.author_name,
            text=row.text,
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
