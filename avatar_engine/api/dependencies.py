"""Dependency injection for API routes.

Services are built once in the application lifespan and kept on
``app.state.services``; routes receive them through these dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request

from avatar_engine.services.avatar_service import AvatarService
from avatar_engine.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """The ServiceContainer built at startup."""
    return request.app.state.services


def get_avatar_service(
    services: ServiceContainer = Depends(get_services),
) -> AvatarService:
    """FastAPI dependency injection for AvatarService."""
    return services.avatar_service


# Type aliases for dependency injection
ServicesDep = Annotated[ServiceContainer, Depends(get_services)]
AvatarServiceDep = Annotated[AvatarService, Depends(get_avatar_service)]
