"""
Translation of lifecycle errors into HTTP errors.
"""
from fastapi import HTTPException, status

from src.domain.errors import (
    LifecycleError,
    NotFoundError,
    PermissionDeniedError,
    ConflictError,
)


def to_http_exception(error: LifecycleError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    # InternalError and anything unforeseen: the message is already client-safe
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
