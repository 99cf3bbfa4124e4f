from fastapi import APIRouter, HTTPException

from apps.api.dependencies.tickets import TicketServiceDep
from apps.api.tickets.errors import TicketStorageError

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready", summary="Ticket storage readiness probe")
async def ready(service: TicketServiceDep) -> dict[str, str]:
    try:
        await service.store.ping()
    except TicketStorageError as exc:
        raise HTTPException(status_code=503, detail="Ticket storage unavailable") from exc
    return {"status": "ready"}
