"""
Action Hub Services

Per-user, per-alert collaboration workflow: follow/flag lifecycle, status
transitions, notes, guest and team notification, engagement aggregates.

Components live in their own modules (store, lifecycle, engagement,
notifications); only the error taxonomy is re-exported here.
"""
from .errors import (
    ActionHubError,
    AuthenticationFailure,
    AuthorizationFailure,
    NotFound,
    InvalidInput,
    DependencyFailure,
)

__all__ = [
    "ActionHubError",
    "AuthenticationFailure",
    "AuthorizationFailure",
    "NotFound",
    "InvalidInput",
    "DependencyFailure",
]
