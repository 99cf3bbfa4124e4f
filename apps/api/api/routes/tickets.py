from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.dependencies.tickets import AgentUser, CustomerUser, TicketServiceDep
from apps.api.services.identity import IdentityProfile
from apps.api.tickets.errors import (
    TicketNotFoundError,
    TicketServiceError,
    TicketStorageError,
    TicketValidationError,
)
from apps.api.tickets.models import Comment, TicketPriority, TicketStatus
from apps.api.tickets.service import TicketView
from apps.api.tickets.sla import SLAClassification, classify_sla, describe_time_remaining

router = APIRouter(prefix="/tickets", tags=["tickets"])


class IdentityModel(BaseModel):
    id: str
    display_name: str | None = None

    @classmethod
    def from_profile(cls, identity_id: str, profile: IdentityProfile | None) -> "IdentityModel":
        return cls(id=identity_id, display_name=profile.display_name if profile else None)


class CommentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    author_id: str
    author_name: str
    text: str
    created_at: datetime


class TicketModel(BaseModel):
    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    created_by: IdentityModel
    assigned_to: IdentityModel | None = None
    sla_deadline: datetime
    sla_status: SLAClassification
    sla_time_remaining: str
    comment_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_view(cls, view: TicketView, now: datetime) -> "TicketModel":
        ticket = view.ticket
        return cls(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            status=ticket.status,
            priority=ticket.priority,
            created_by=IdentityModel.from_profile(ticket.created_by, view.created_by),
            assigned_to=(
                IdentityModel.from_profile(ticket.assigned_to, view.assigned_to) if ticket.assigned_to else None
            ),
            sla_deadline=ticket.sla_deadline,
            sla_status=classify_sla(ticket, now),
            sla_time_remaining=describe_time_remaining(ticket.sla_deadline, now),
            comment_count=len(ticket.comments),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class TicketDetailModel(TicketModel):
    comments: list[CommentModel] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: TicketView, now: datetime) -> "TicketDetailModel":
        base = TicketModel.from_view(view, now)
        return cls(**base.model_dump(), comments=[_comment_to_model(c) for c in view.ticket.comments])


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    priority: TicketPriority | None = Field(default=None)


class TicketUpdateRequest(BaseModel):
    """Partial update. Only fields present in the request body are applied."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, min_length=1)
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    assigned_to: str | None = Field(default=None, min_length=1, max_length=255)


class CommentCreateRequest(BaseModel):
    text: str = Field(..., min_length=1)


class SLASummaryModel(BaseModel):
    generated_at: datetime
    counts: dict[str, int]


def _comment_to_model(comment: Comment) -> CommentModel:
    return CommentModel.model_validate(comment)


def _http_error(exc: TicketServiceError) -> HTTPException:
    if isinstance(exc, TicketNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, TicketValidationError):
        return HTTPException(
            status_code=422,
            detail={"field": exc.field, "message": str(exc)},
        )
    if isinstance(exc, TicketStorageError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Ticket storage unavailable")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=list[TicketModel], summary="List tickets, newest first")
async def list_tickets(service: TicketServiceDep, _: CustomerUser) -> list[TicketModel]:
    try:
        views = await service.list_ticket_views()
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    now = service.now()
    return [TicketModel.from_view(view, now) for view in views]


@router.get("/sla/summary", response_model=SLASummaryModel, summary="Count tickets per SLA classification")
async def sla_summary(service: TicketServiceDep, _: CustomerUser) -> SLASummaryModel:
    now = service.now()
    try:
        counts = await service.sla_summary(now)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return SLASummaryModel(
        generated_at=now,
        counts={classification.value: count for classification, count in counts.items()},
    )


@router.post("", response_model=TicketDetailModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    user: CustomerUser,
) -> TicketDetailModel:
    try:
        ticket = await service.create_ticket(
            identity=user.user_id,
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
        )
        view = await service.describe(ticket)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketDetailModel.from_view(view, service.now())


@router.get("/{ticket_id}", response_model=TicketDetailModel)
async def get_ticket(ticket_id: str, service: TicketServiceDep, _: CustomerUser) -> TicketDetailModel:
    try:
        view = await service.get_ticket_view(ticket_id)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketDetailModel.from_view(view, service.now())


@router.patch("/{ticket_id}", response_model=TicketDetailModel)
@router.put("/{ticket_id}", response_model=TicketDetailModel)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    _: AgentUser,
) -> TicketDetailModel:
    try:
        ticket = await service.update_ticket(ticket_id, payload.model_dump(exclude_unset=True))
        view = await service.describe(ticket)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketDetailModel.from_view(view, service.now())


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, service: TicketServiceDep, _: AgentUser) -> None:
    try:
        await service.delete_ticket(ticket_id)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc


@router.post("/{ticket_id}/comments", response_model=TicketDetailModel, status_code=status.HTTP_201_CREATED)
async def add_ticket_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    user: CustomerUser,
) -> TicketDetailModel:
    try:
        ticket = await service.add_comment(
            ticket_id,
            identity=user.user_id,
            display_name=user.display_name,
            text=payload.text,
        )
        view = await service.describe(ticket)
    except TicketServiceError as exc:
        raise _http_error(exc) from exc
    return TicketDetailModel.from_view(view, service.now())
