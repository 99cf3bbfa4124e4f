from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from apps.api.tickets.errors import TicketStorageError, TicketValidationError
from apps.api.tickets.models import Comment, Ticket, TicketPriority, TicketStatus
from apps.api.tickets.repository import SqlTicketRepository
from packages.db.models import TicketCommentTable

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _make_ticket(ticket_id: str = "t-1", *, created_at: datetime = NOW, **overrides) -> Ticket:
    values = dict(
        id=ticket_id,
        title="Laptop will not boot",
        description="Stuck on the firmware logo",
        status=TicketStatus.OPEN,
        priority=TicketPriority.HIGH,
        created_by="user-customer",
        assigned_to=None,
        sla_deadline=created_at + timedelta(hours=4),
        created_at=created_at,
        updated_at=created_at,
    )
    values.update(overrides)
    return Ticket(**values)


def _comment(comment_id: str, text: str, *, minutes: int = 0) -> Comment:
    return Comment(
        id=comment_id,
        author_id="user-agent",
        author_name="Support Agent",
        text=text,
        created_at=NOW + timedelta(minutes=minutes),
    )


@pytest_asyncio.fixture
async def engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def repository(session_factory, engine) -> SqlTicketRepository:
    return SqlTicketRepository(session_factory, engine=engine)


@pytest.mark.asyncio
async def test_ensure_schema_creates_tables(engine: AsyncEngine):
    repository = SqlTicketRepository(async_sessionmaker(engine, expire_on_commit=False), engine=engine)

    await repository.ensure_schema()

    async with engine.begin() as conn:
        tables = await conn.run_sync(lambda sync_conn: set(sa_inspect(sync_conn).get_table_names()))
    assert {"tickets", "ticket_comments", "users"} <= tables


@pytest.mark.asyncio
async def test_create_and_get_round_trip(repository: SqlTicketRepository):
    ticket = _make_ticket(assigned_to="user-agent")

    assert await repository.create(ticket) == "t-1"
    loaded = await repository.get("t-1")

    assert loaded == ticket
    assert loaded.sla_deadline.tzinfo is not None


@pytest.mark.asyncio
async def test_create_rejects_invalid_ticket(repository: SqlTicketRepository):
    with pytest.raises(TicketValidationError) as exc:
        await repository.create(_make_ticket(title=" "))

    assert exc.value.field == "title"
    assert await repository.list_all() == []


@pytest.mark.asyncio
async def test_list_all_sorts_newest_first_with_threads(repository: SqlTicketRepository):
    await repository.create(_make_ticket("old", created_at=NOW))
    await repository.create(_make_ticket("new", created_at=NOW + timedelta(hours=1)))
    await repository.append_comment("old", _comment("c-1", "first"), NOW + timedelta(hours=2))

    tickets = await repository.list_all()

    assert [ticket.id for ticket in tickets] == ["new", "old"]
    assert tickets[0].comments == ()
    assert [comment.text for comment in tickets[1].comments] == ["first"]


@pytest.mark.asyncio
async def test_update_applies_only_patchable_fields(repository: SqlTicketRepository):
    original = _make_ticket()
    await repository.create(original)
    later = NOW + timedelta(minutes=10)

    updated = await repository.update(
        "t-1",
        {"status": TicketStatus.RESOLVED, "sla_deadline": NOW, "created_by": "mallory"},
        later,
    )

    assert updated is not None
    assert updated.status == TicketStatus.RESOLVED
    assert updated.updated_at == later
    assert updated.sla_deadline == original.sla_deadline
    assert updated.created_by == original.created_by
    assert updated.title == original.title
    assert await repository.get("t-1") == updated


@pytest.mark.asyncio
async def test_update_can_clear_assignment(repository: SqlTicketRepository):
    await repository.create(_make_ticket(assigned_to="user-agent"))

    updated = await repository.update("t-1", {"assigned_to": None}, NOW)

    assert updated is not None
    assert updated.assigned_to is None


@pytest.mark.asyncio
async def test_append_comment_preserves_order(repository: SqlTicketRepository, session_factory):
    await repository.create(_make_ticket())

    for index, text in enumerate(["c1", "c2", "c3"]):
        updated = await repository.append_comment(
            "t-1", _comment(f"id-{index}", text, minutes=index), NOW + timedelta(minutes=index)
        )

    assert updated is not None
    assert [comment.text for comment in updated.comments] == ["c1", "c2", "c3"]
    assert updated.updated_at == NOW + timedelta(minutes=2)

    async with session_factory() as session:
        result = await session.execute(
            select(TicketCommentTable.position)
            .where(TicketCommentTable.ticket_id == "t-1")
            .order_by(TicketCommentTable.position)
        )
        assert list(result.scalars().all()) == [0, 1, 2]


@pytest.mark.asyncio
async def test_delete_removes_ticket_and_comments(repository: SqlTicketRepository, session_factory):
    await repository.create(_make_ticket())
    await repository.append_comment("t-1", _comment("c-1", "hello"), NOW)

    assert await repository.delete("t-1") is True
    assert await repository.get("t-1") is None
    assert await repository.delete("t-1") is False

    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(TicketCommentTable))
        assert result.scalar() == 0


@pytest.mark.asyncio
async def test_missing_ticket_mutations_return_none(repository: SqlTicketRepository):
    assert await repository.update("missing", {"title": "x"}, NOW) is None
    assert await repository.append_comment("missing", _comment("c-1", "x"), NOW) is None


@pytest.mark.asyncio
async def test_ping(repository: SqlTicketRepository):
    assert await repository.ping() is True


@pytest.mark.asyncio
async def test_storage_failures_are_wrapped():
    def broken_factory():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    repository = SqlTicketRepository(broken_factory)  # type: ignore[arg-type]

    with pytest.raises(TicketStorageError):
        await repository.get("t-1")
    with pytest.raises(TicketStorageError):
        await repository.ping()
