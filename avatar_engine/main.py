"""
FastAPI application entry point.

Run with: uvicorn avatar_engine.main:app --reload
"""

from contextlib import asynccontextmanager
import uuid

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from avatar_engine import __version__
from avatar_engine.core.config import settings
from avatar_engine.core.logging import configure_logging, get_logger, bind_context, clear_context
from avatar_engine.persistence.database import init_database
from avatar_engine.api.routes import avatars, health, sessions
from avatar_engine.api.exception_handlers import setup_exception_handlers
from avatar_engine.services.container import build_services

# Configure logging before anything else
configure_logging()
log = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a request_id.

    An inbound X-Request-ID (from the chat front end) is reused so one id
    follows the message across services; otherwise a UUID4 is generated.
    The id is bound to the structlog context and echoed in the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id, path=request.url.path)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize storage and services, run the sweeper until shutdown."""
    log.info(
        "application_starting",
        debug=settings.debug,
        database_path=str(settings.database_path),
        config_dir=str(settings.config_dir),
    )

    await init_database()

    services = build_services()
    app.state.services = services
    services.sweeper.start()

    log.info("application_started")

    yield

    log.info("application_shutting_down")
    await services.sweeper.stop()


def create_app() -> FastAPI:
    application = FastAPI(
        title="Avatar Engine",
        description="Conversation orchestration for business avatars",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # Browser front ends talk to a local engine during development
    if settings.debug:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    application.add_middleware(CorrelationIDMiddleware)

    setup_exception_handlers(application)

    application.include_router(health.router, tags=["system"])
    application.include_router(sessions.router)
    application.include_router(avatars.router)

    @application.get("/")
    async def root():
        """Service name, version and status."""
        return {"name": "Avatar Engine", "version": __version__, "status": "running"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "avatar_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
