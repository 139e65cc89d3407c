"""
Health check endpoints.

/health reports each component; /health/live and /health/ready are the
liveness and readiness checks used by the process supervisor.
"""

from fastapi import APIRouter, HTTPException
import structlog

from avatar_engine import __version__
from avatar_engine.api.dependencies import ServicesDep
from avatar_engine.core.config import settings
from avatar_engine.core.exceptions import ConfigurationError
from avatar_engine.domain.models.avatar import StandardAvatar
from avatar_engine.persistence.database import check_database_health
from avatar_engine.services.container import ServiceContainer

log = structlog.get_logger(__name__)

router = APIRouter()


def check_definitions(services: ServiceContainer) -> dict:
    """Resolve the default avatar type's definitions (served from cache once loaded)."""
    avatar = StandardAvatar(avatar_type=settings.default_avatar_type)
    try:
        definitions = services.catalog.resolve(avatar)
    except ConfigurationError as e:
        log.error("definitions_health_check_failed", error=e.message)
        return {"status": "unhealthy", "error": e.message}
    return {
        "status": "healthy",
        "avatar_type": avatar.avatar_type,
        "intents": len(definitions.intents),
        "flows": len(definitions.flows),
    }


@router.get("/health")
async def health_check(services: ServicesDep):
    """Database, definition catalog and maintenance sweeper status."""
    components = {
        "database": await check_database_health(),
        "definitions": check_definitions(services),
    }
    healthy = all(c["status"] == "healthy" for c in components.values())
    components["maintenance"] = {
        "status": "running" if services.sweeper.is_running else "stopped"
    }

    return {
        "status": "healthy" if healthy else "unhealthy",
        "version": __version__,
        "debug": settings.debug,
        "components": components,
    }


@router.get("/health/live")
async def liveness():
    """200 while the process is up."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness():
    """200 once the database answers queries, 503 otherwise."""
    db_health = await check_database_health()

    if db_health["status"] != "healthy":
        raise HTTPException(status_code=503, detail="Database not ready")

    return {"status": "ready"}
