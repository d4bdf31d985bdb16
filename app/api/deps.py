"""API dependency injection.

Provides FastAPI dependencies for the service container and the calling
user's identity.
"""

import uuid
from typing import Annotated

from fastapi import Depends, Header, Request

from app.core.exceptions import ValidationError
from app.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """Dependency that returns the container built in the app lifespan.

    Usage:
        @router.get("/wallet")
        async def get_wallet(container: Container):
            ...
    """
    return request.app.state.container


def get_current_user_id(x_user_id: Annotated[str, Header()]) -> uuid.UUID:
    """Caller identity, set by the upstream auth layer."""
    try:
        return uuid.UUID(x_user_id)
    except ValueError as exc:
        raise ValidationError("X-User-Id must be a UUID") from exc


# Type aliases for cleaner dependency injection syntax
Container = Annotated[ServiceContainer, Depends(get_container)]
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
