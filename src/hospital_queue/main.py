"""
FastAPI application entry point.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from hospital_queue.announcements.resolver import AnnouncementResolver, build_resolver
from hospital_queue.announcements.router import router as audio_router
from hospital_queue.broadcast.hub import WebSocketHub
from hospital_queue.broadcast.router import router as broadcast_router
from hospital_queue.calls.repository import CallRequestRepository
from hospital_queue.calls.router import router as calls_router
from hospital_queue.calls.sequencer import CallSequencer
from hospital_queue.config import Settings, get_settings
from hospital_queue.printing.dispatcher import PrintDispatcher
from hospital_queue.printing.router import router as printing_router
from hospital_queue.shared.database import DatabaseManager
from hospital_queue.shared.exceptions import NotFoundError, QueueCoreError, StoreError, ValidationError
from hospital_queue.shared.logging import get_logger, setup_logging
from hospital_queue.tickets.interface import TicketCounterGateway
from hospital_queue.tickets.repository import SqlTicketCounterGateway

logger = get_logger(__name__)


@dataclass
class ServiceComponents:
    """Everything the routers reach through ``app.state``."""

    hub: WebSocketHub
    ticket_gateway: TicketCounterGateway
    resolver: AnnouncementResolver
    sequencer: CallSequencer
    print_dispatcher: PrintDispatcher
    db: DatabaseManager | None = None


def build_components(settings: Settings) -> ServiceComponents:
    """Wire the production components from settings."""
    db = DatabaseManager(settings.database_url)
    hub = WebSocketHub()
    gateway = SqlTicketCounterGateway(db.session, timeout_seconds=settings.store_timeout_seconds)
    resolver = build_resolver(settings.audio, hub)
    sequencer = CallSequencer(
        store=CallRequestRepository(db.session, timeout_seconds=settings.store_timeout_seconds),
        gateway=gateway,
        announcer=resolver,
        broadcaster=hub,
        settings=settings.sequencer,
    )
    dispatcher = PrintDispatcher(broadcaster=hub, settings=settings.printing)
    return ServiceComponents(
        hub=hub,
        ticket_gateway=gateway,
        resolver=resolver,
        sequencer=sequencer,
        print_dispatcher=dispatcher,
        db=db,
    )


def _make_lifespan(components: ServiceComponents | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        setup_logging()
        settings = get_settings()
        logger.info("Application starting", extra={"env": settings.app_env})

        built = components or build_components(settings)
        app.state.hub = built.hub
        app.state.ticket_gateway = built.ticket_gateway
        app.state.resolver = built.resolver
        app.state.sequencer = built.sequencer
        app.state.print_dispatcher = built.print_dispatcher

        built.resolver.audio_dir.mkdir(parents=True, exist_ok=True)
        if built.db is not None and settings.app_env == "dev":
            await built.db.create_all()

        if settings.sequencer.enabled:
            await built.sequencer.start()
        if settings.printing.enabled:
            await built.print_dispatcher.start()

        yield

        logger.info("Shutting down application")
        await built.sequencer.stop()
        await built.sequencer.wait_for_idle()
        await built.print_dispatcher.stop()
        await built.resolver.aclose()
        if built.db is not None:
            await built.db.close()
        logger.info("Application shutdown complete")

    return lifespan


def create_app(components: ServiceComponents | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        components: Prebuilt components; built from settings at startup
            when omitted.
    """
    settings = get_settings()

    app = FastAPI(
        title="Hospital Queue Call Core",
        description="Call sequencing, Urdu voice announcements and ticket printing",
        version="0.1.0",
        lifespan=_make_lifespan(components),
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    async def _store_unavailable(_: Request, exc: StoreError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": {"code": exc.code, "message": exc.message}},
        )

    @app.exception_handler(QueueCoreError)
    async def _core_error(_: Request, exc: QueueCoreError) -> JSONResponse:
        logger.error("Unhandled core error", extra={"code": exc.code, "error": exc.message})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": {"code": exc.code, "message": exc.message}},
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(calls_router)
    app.include_router(printing_router)
    app.include_router(audio_router)
    app.include_router(broadcast_router)

    # Generated clips are played by display screens from here.
    app.mount(
        settings.audio.base_url,
        StaticFiles(directory=settings.audio.directory, check_dir=False),
        name="audio",
    )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()

