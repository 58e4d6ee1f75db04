"""
Error taxonomy for location lifecycle operations.

Routers translate these into HTTP responses; nothing here knows about HTTP.
"""
from typing import Optional


class LifecycleError(Exception):
    """Base exception for lifecycle operations."""
    pass


class NotFoundError(LifecycleError):
    """The addressed entity does not exist."""

    entity = "Resource"

    def __init__(self, entity_id: Optional[int] = None, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity} not found")


class LocationNotFoundError(NotFoundError):
    entity = "Location"


class UserSaveNotFoundError(NotFoundError):
    entity = "Saved location"


class PhotoNotFoundError(NotFoundError):
    entity = "Photo"


class PermissionDeniedError(LifecycleError):
    """A capability check failed; nothing was changed."""
    pass


class ConflictError(LifecycleError):
    """A concurrent change removed the target while the operation was running."""
    pass


class InternalError(LifecycleError):
    """Unexpected store failure. The message is safe to show to clients."""
    pass
