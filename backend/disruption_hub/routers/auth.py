"""
Disruption Hub - Authentication Router
Handles login (primary accounts and collaborators), token refresh, logout and session verification.
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr

from ..auth import get_current_identity, get_token_authority, security, credentials_exception
from ..services.action_hub.errors import ActionHubError
from ..services.auth import Identity, TokenAuthority
from .errors import to_http

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    message: str


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/login", response_model=TokenResponse)
def login(request: LoginRequest, authority: TokenAuthority = Depends(get_token_authority)):
    """
    Authenticate a collaborator or primary account and return a token pair.
    """
    try:
        tokens = authority.authenticate_login(request.email, request.password)
    except ActionHubError as e:
        raise to_http(e)
    return TokenResponse(**tokens)


@router.post("/refresh", response_model=TokenResponse)
def refresh(request: RefreshRequest, authority: TokenAuthority = Depends(get_token_authority)):
    """
    Exchange a refresh token for a new pair. The presented refresh token is revoked.
    """
    try:
        tokens = authority.refresh(request.refresh_token)
    except ActionHubError as e:
        raise to_http(e)
    return TokenResponse(**tokens)


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Optional[LogoutRequest] = None,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authority: TokenAuthority = Depends(get_token_authority),
):
    """
    Revoke the presented access token (and refresh token, if supplied).
    """
    if credentials is None:
        raise credentials_exception()

    try:
        if not authority.revoke(credentials.credentials):
            raise credentials_exception()
        if request is not None and request.refresh_token:
            authority.revoke(request.refresh_token)
    except ActionHubError as e:
        raise to_http(e)

    return MessageResponse(message="Logged out successfully")


@router.get("/me")
def get_me(identity: Identity = Depends(get_current_identity)):
    """
    Current identity with live role, premium flag and collaborator context.
    """
    return identity.to_dict()
