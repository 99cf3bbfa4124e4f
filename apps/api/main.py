import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from apps.api.api.routes import ping, tickets
from apps.api.core.config import Settings, get_settings
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.dependencies.auth import known_profiles
from apps.api.middleware import RBACMiddleware
from apps.api.services.identity import IdentityDirectory, SqlIdentityDirectory, StaticIdentityDirectory
from apps.api.tickets.repository import InMemoryTicketRepository, SqlTicketRepository
from apps.api.tickets.service import TicketService


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def _build_directory(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession] | None = None
) -> IdentityDirectory:
    if settings.identity_source == "database" and session_factory is not None:
        return SqlIdentityDirectory(session_factory)
    return StaticIdentityDirectory(known_profiles())


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    db_engine = None
    app.state.ticket_service = None
    try:
        if settings.ticket_store == "memory":
            app.state.ticket_service = TicketService(InMemoryTicketRepository(), directory=_build_directory(settings))
            logger.info("Using in-memory ticket store")
        else:
            db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
            session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
            repository = SqlTicketRepository(session_factory, engine=db_engine)
            await repository.ensure_schema()
            app.state.ticket_service = TicketService(
                repository,
                directory=_build_directory(settings, session_factory),
            )
            logger.info("Ticket store connected to %s", db_engine.url.render_as_string(hide_password=True))
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Ticket service initialisation failed; ticket routes will return 503")
        app.state.ticket_service = None
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)
        logging.getLogger(settings.app_name).info("Shutdown complete")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual entry point
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
