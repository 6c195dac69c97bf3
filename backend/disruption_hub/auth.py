"""
Disruption Hub - Authentication Dependencies
Bearer token resolution and role/premium gates for FastAPI routes
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .database import get_db
from .services.action_hub.errors import AuthorizationFailure, DependencyFailure
from .services.auth import Identity, TokenAuthority, Operation, require_operation

logger = logging.getLogger(__name__)

# Bearer token security (missing header is reported as 401 below, not 403)
security = HTTPBearer(auto_error=False)


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_token_authority(db: Session = Depends(get_db)) -> TokenAuthority:
    return TokenAuthority(db)


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authority: TokenAuthority = Depends(get_token_authority),
) -> Identity:
    """
    Dependency to get the current authenticated identity.
    Validates the token and re-reads the live account on every request.
    """
    if credentials is None:
        raise credentials_exception()

    try:
        identity = authority.resolve(credentials.credentials)
    except DependencyFailure:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        )

    if identity is None:
        raise credentials_exception()
    return identity


def require(operation: Operation):
    """
    Dependency factory gating a route on the operation's allowed roles
    (and premium, for premium operations).
    """
    def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        try:
            require_operation(identity, operation)
        except AuthorizationFailure as e:
            logger.info(f"Access denied to {operation.value} for {identity.actor_email}: {e.reason}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.to_dict())
        return identity

    return dependency
