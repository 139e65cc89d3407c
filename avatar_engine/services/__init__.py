# noqa
from avatar_engine.services.avatar_service import AvatarService
from avatar_engine.services.container import ServiceContainer, build_services

__all__ = ["AvatarService", "ServiceContainer", "build_services"]
