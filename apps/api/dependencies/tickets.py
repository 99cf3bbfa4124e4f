from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from apps.api.dependencies.auth import Role, User, role_required
from apps.api.tickets.service import TicketService

require_agent = role_required(Role.AGENT)
require_customer = role_required(Role.CUSTOMER)

AgentUser = Annotated[User, Depends(require_agent)]
CustomerUser = Annotated[User, Depends(require_customer)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not available")
    return service


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
