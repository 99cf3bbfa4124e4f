from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from apps.api.dependencies.auth import known_profiles
from apps.api.services.identity import StaticIdentityDirectory
from apps.api.tickets.repository import InMemoryTicketRepository
from apps.api.tickets.service import TicketService

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def directory() -> StaticIdentityDirectory:
    return StaticIdentityDirectory(known_profiles())


@pytest.fixture
def service(memory_store, clock, directory) -> TicketService:
    return TicketService(memory_store, clock=clock, directory=directory)
