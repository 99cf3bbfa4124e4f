from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from apps.api.tickets.errors import TicketNotFoundError, TicketValidationError
from apps.api.tickets.models import TicketPriority, TicketStatus
from apps.api.tickets.service import TicketService
from apps.api.tickets.sla import SLAClassification


async def _create(service: TicketService, **overrides):
    params = {
        "identity": "user-customer",
        "title": "VPN drops every hour",
        "description": "Connection resets at the top of each hour",
    }
    params.update(overrides)
    return await service.create_ticket(**params)


@pytest.mark.asyncio
async def test_create_ticket_sets_deadline_from_priority(service, clock):
    ticket = await _create(service, priority=TicketPriority.CRITICAL)

    assert ticket.status == TicketStatus.OPEN
    assert ticket.created_by == "user-customer"
    assert ticket.assigned_to is None
    assert ticket.comments == ()
    assert ticket.created_at == ticket.updated_at == clock.current
    assert ticket.sla_deadline == datetime(2024, 1, 1, 1, tzinfo=timezone.utc)
    assert await service.get_ticket(ticket.id) == ticket


@pytest.mark.asyncio
async def test_create_ticket_defaults_to_medium_priority(service, clock):
    ticket = await _create(service)

    assert ticket.priority == TicketPriority.MEDIUM
    assert ticket.sla_deadline == clock.current + timedelta(hours=8)


@pytest.mark.asyncio
async def test_create_ticket_accepts_priority_strings(service, clock):
    ticket = await _create(service, priority="low")

    assert ticket.priority == TicketPriority.LOW
    assert ticket.sla_deadline == clock.current + timedelta(hours=24)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("field", "overrides"),
    [
        ("title", {"title": ""}),
        ("title", {"title": "   "}),
        ("description", {"description": ""}),
        ("priority", {"priority": "Urgent"}),
    ],
)
async def test_create_ticket_rejects_invalid_input_without_persisting(service, field, overrides):
    await _create(service)

    with pytest.raises(TicketValidationError) as exc:
        await _create(service, **overrides)

    assert exc.value.field == field
    assert len(await service.list_tickets()) == 1


@pytest.mark.asyncio
async def test_sla_deadline_survives_priority_change(service, clock):
    ticket = await _create(service, priority=TicketPriority.HIGH)
    clock.advance(minutes=30)

    updated = await service.update_ticket(ticket.id, {"priority": TicketPriority.LOW})

    assert updated.priority == TicketPriority.LOW
    assert updated.sla_deadline == ticket.sla_deadline


@pytest.mark.asyncio
async def test_status_update_only_touches_status_and_timestamp(service, clock):
    ticket = await _create(service)
    ticket = await service.add_comment(ticket.id, identity="user-agent", display_name="Agent", text="Looking")
    clock.advance(hours=1)

    updated = await service.update_ticket(ticket.id, {"status": "Resolved"})

    assert updated.status == TicketStatus.RESOLVED
    assert updated.updated_at == clock.current
    assert updated.title == ticket.title
    assert updated.description == ticket.description
    assert updated.priority == ticket.priority
    assert updated.created_by == ticket.created_by
    assert updated.comments == ticket.comments
    assert updated.sla_deadline == ticket.sla_deadline
    assert updated.created_at == ticket.created_at


@pytest.mark.asyncio
async def test_update_drops_write_once_fields(service, clock):
    ticket = await _create(service)

    updated = await service.update_ticket(
        ticket.id,
        {
            "created_by": "mallory",
            "sla_deadline": clock.current + timedelta(days=30),
            "created_at": clock.current - timedelta(days=1),
            "comments": [],
            "id": "other",
            "status": TicketStatus.IN_PROGRESS,
        },
    )

    assert updated.id == ticket.id
    assert updated.created_by == "user-customer"
    assert updated.sla_deadline == ticket.sla_deadline
    assert updated.created_at == ticket.created_at
    assert updated.status == TicketStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_assignment_can_be_set_and_cleared(service):
    ticket = await _create(service)

    assigned = await service.update_ticket(ticket.id, {"assigned_to": "user-agent"})
    untouched = await service.update_ticket(ticket.id, {"title": "VPN drops every 60 minutes"})
    cleared = await service.update_ticket(ticket.id, {"assigned_to": None})

    assert assigned.assigned_to == "user-agent"
    assert untouched.assigned_to == "user-agent"
    assert cleared.assigned_to is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "changes",
    [{"title": ""}, {"description": None}, {"status": "Pending"}, {"priority": None}, {"assigned_to": ""}],
)
async def test_update_rejects_invalid_values(service, changes):
    ticket = await _create(service)

    with pytest.raises(TicketValidationError):
        await service.update_ticket(ticket.id, changes)

    assert await service.get_ticket(ticket.id) == ticket


@pytest.mark.asyncio
async def test_update_missing_ticket_raises_not_found(service):
    with pytest.raises(TicketNotFoundError):
        await service.update_ticket("missing", {"status": TicketStatus.CLOSED})


@pytest.mark.asyncio
async def test_updated_at_never_precedes_created_at(service, clock):
    ticket = await _create(service)
    clock.advance(hours=-2)

    updated = await service.update_ticket(ticket.id, {"status": TicketStatus.IN_PROGRESS})

    assert updated.updated_at == ticket.created_at


@pytest.mark.asyncio
async def test_comments_are_appended_in_order(service, clock):
    ticket = await _create(service)
    for author, text in [("user-customer", "c1"), ("user-agent", "c2"), ("user-customer", "c3")]:
        clock.advance(minutes=5)
        ticket = await service.add_comment(ticket.id, identity=author, display_name=author.upper(), text=text)

    assert [comment.text for comment in ticket.comments] == ["c1", "c2", "c3"]
    assert [comment.author_name for comment in ticket.comments] == ["USER-CUSTOMER", "USER-AGENT", "USER-CUSTOMER"]
    assert ticket.updated_at == clock.current
    assert ticket.comments[-1].created_at == clock.current
    assert len({comment.id for comment in ticket.comments}) == 3


@pytest.mark.asyncio
async def test_add_comment_validation_and_missing_ticket(service):
    ticket = await _create(service)

    with pytest.raises(TicketValidationError) as exc:
        await service.add_comment(ticket.id, identity="user-agent", display_name="Agent", text="  ")
    assert exc.value.field == "text"

    with pytest.raises(TicketNotFoundError):
        await service.add_comment("missing", identity="user-agent", display_name="Agent", text="hello")


@pytest.mark.asyncio
async def test_delete_ticket(service):
    ticket = await _create(service)

    await service.delete_ticket(ticket.id)

    with pytest.raises(TicketNotFoundError):
        await service.get_ticket(ticket.id)
    with pytest.raises(TicketNotFoundError):
        await service.delete_ticket(ticket.id)


@pytest.mark.asyncio
async def test_list_tickets_newest_first(service, clock):
    first = await _create(service, title="first")
    clock.advance(minutes=1)
    second = await _create(service, title="second")

    tickets = await service.list_tickets()

    assert [ticket.id for ticket in tickets] == [second.id, first.id]


@pytest.mark.asyncio
async def test_views_join_identity_display_names(service):
    ticket = await _create(service)
    await service.update_ticket(ticket.id, {"assigned_to": "user-agent"})
    await _create(service, identity="user-unknown")

    views = {view.ticket.created_by: view for view in await service.list_ticket_views()}

    assert views["user-customer"].created_by.display_name == "Customer"
    assert views["user-customer"].assigned_to.display_name == "Support Agent"
    assert views["user-unknown"].created_by is None
    assert views["user-unknown"].assigned_to is None


@pytest.mark.asyncio
async def test_views_without_directory(memory_store, clock):
    service = TicketService(memory_store, clock=clock)
    ticket = await _create(service)

    view = await service.get_ticket_view(ticket.id)

    assert view.ticket == ticket
    assert view.created_by is None


@pytest.mark.asyncio
async def test_sla_summary_counts_each_classification(service, clock):
    critical = await _create(service, priority=TicketPriority.CRITICAL)
    await _create(service, priority=TicketPriority.LOW)
    resolved = await _create(service, priority=TicketPriority.CRITICAL)
    await service.update_ticket(resolved.id, {"status": TicketStatus.RESOLVED})
    await _create(service, priority=TicketPriority.HIGH)

    clock.advance(hours=3, minutes=30)
    summary = await service.sla_summary()

    assert service.classify(critical) == SLAClassification.BREACHED
    assert summary == {
        SLAClassification.MET: 1,
        SLAClassification.BREACHED: 1,
        SLAClassification.CRITICAL: 1,
        SLAClassification.ON_TRACK: 1,
    }
