"""SQLModel table definitions for the helpdesk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class TicketTable(SQLModel, table=True):
    """Support tickets with their SLA deadline fixed at creation."""

    __tablename__ = "tickets"

    id: str = Field(sa_column=Column(String(36), primary_key=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False))
    priority: str = Field(sa_column=Column(String(50), nullable=False))
    created_by: str = Field(sa_column=Column(String(255), nullable=False))
    assigned_to: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    sla_deadline: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCommentTable(SQLModel, table=True):
    """Append-only comment thread entries, ordered by ``position`` within a ticket."""

    __tablename__ = "ticket_comments"
    __table_args__ = (UniqueConstraint("ticket_id", "position", name="uq_ticket_comments_position"),)

    id: str = Field(sa_column=Column(String(36), primary_key=True))
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    position: int = Field(sa_column=Column(Integer, nullable=False))
    author_id: str = Field(sa_column=Column(String(255), nullable=False))
    author_name: str = Field(sa_column=Column(String(255), nullable=False))
    text: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserTable(SQLModel, table=True):
    """Application user accounts with RBAC roles."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, sa_column=Column(String(36), primary_key=True))
    username: str = Field(sa_column=Column(String(150), nullable=False, unique=True))
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    display_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    roles: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
