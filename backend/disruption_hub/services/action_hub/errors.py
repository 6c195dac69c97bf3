"""
Action Hub error taxonomy.

Routers translate these into HTTP responses; services never raise HTTPException.
"""
from typing import Iterable, Optional


class ActionHubError(Exception):
    """Base class for every domain failure raised by the services layer."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class AuthenticationFailure(ActionHubError):
    """
    Credential could not be resolved to a live identity.

    Deliberately carries no cause: expired, revoked, unknown account and
    inactive collaborator all look the same to the caller.
    """

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class AuthorizationFailure(ActionHubError):
    """Identity resolved but is not allowed to perform the operation."""

    NOT_OWNER = "not_owner"
    ROLE_INSUFFICIENT = "role_insufficient"
    PREMIUM_REQUIRED = "premium_required"

    def __init__(
        self,
        reason: str,
        message: str = "",
        required: Optional[Iterable[str]] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(message or reason)
        self.reason = reason
        self.required = sorted(required) if required else []
        self.actual = actual

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "message": self.message,
            "required": self.required,
            "actual": self.actual,
        }


class NotFound(ActionHubError):
    """Referenced Action Item or alert does not exist (or is not visible)."""

    def __init__(self, message: str = "Not found", alert_exists: Optional[bool] = None):
        super().__init__(message)
        self.alert_exists = alert_exists


class InvalidInput(ActionHubError):
    """Request was well-formed but semantically unusable."""


class DependencyFailure(ActionHubError):
    """Account/alert directory or mail transport was unavailable."""
