"""Read-only identity lookups used to decorate tickets with display data."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import UserTable

logger = logging.getLogger(__name__)


class IdentityLookupError(RuntimeError):
    """Raised when the identity source cannot be read."""


@dataclass(frozen=True, slots=True)
class IdentityProfile:
    """Display information for an identity reference."""

    id: str
    display_name: str
    email: str | None = None


class IdentityDirectory(Protocol):
    async def lookup(self, identity_ids: Iterable[str]) -> dict[str, IdentityProfile]:
        ...


class StaticIdentityDirectory:
    """Directory backed by a fixed set of profiles."""

    def __init__(self, profiles: Iterable[IdentityProfile]) -> None:
        self._profiles = {profile.id: profile for profile in profiles}

    async def lookup(self, identity_ids: Iterable[str]) -> dict[str, IdentityProfile]:
        return {
            identity_id: self._profiles[identity_id]
            for identity_id in set(identity_ids)
            if identity_id in self._profiles
        }


class SqlIdentityDirectory:
    """Directory reading the `users` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def lookup(self, identity_ids: Iterable[str]) -> dict[str, IdentityProfile]:
        wanted = sorted(set(identity_ids))
        if not wanted:
            return {}
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(UserTable).where(UserTable.id.in_(wanted)))
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load %d user profile(s)", len(wanted))
            raise IdentityLookupError("Failed to load user profiles") from exc
        return {
            row.id: IdentityProfile(id=row.id, display_name=row.display_name or row.username, email=row.email)
            for row in rows
        }
