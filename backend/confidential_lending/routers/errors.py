"""
Translation of service-layer errors into HTTP responses.
"""
from fastapi import HTTPException, status

from ..services.errors import (
    LendingError, NotFoundError, PermissionDeniedError, InvalidStateError, ValidationError, NoScoreError,
)

STATUS_BY_ERROR = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    InvalidStateError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NoScoreError: status.HTTP_400_BAD_REQUEST,
}


def http_error(error: LendingError) -> HTTPException:
    """HTTPException carrying the error kind and message."""
    code = STATUS_BY_ERROR.get(type(error), status.HTTP_400_BAD_REQUEST)
    return HTTPException(
        status_code=code,
        detail={"error": type(error).__name__, "message": str(error)},
    )
