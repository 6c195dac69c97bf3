"""Translation of service-layer failures into HTTP errors."""
from fastapi import HTTPException, status

from ..services.action_hub.errors import (
    ActionHubError,
    AuthenticationFailure,
    AuthorizationFailure,
    NotFound,
    InvalidInput,
    DependencyFailure,
)


def to_http(error: ActionHubError) -> HTTPException:
    if isinstance(error, AuthenticationFailure):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(error, AuthorizationFailure):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error.to_dict())
    if isinstance(error, NotFound):
        detail = {"message": error.message}
        if error.alert_exists is not None:
            detail["alertExists"] = error.alert_exists
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if isinstance(error, InvalidInput):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    if isinstance(error, DependencyFailure):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server error")
