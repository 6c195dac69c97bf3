"""
Authorization Policy

Pure decisions over a resolved Identity. No persistence, no I/O.

Role gating is table-driven: each gated operation maps to the set of
effective roles allowed to perform it.
"""
from enum import Enum
from typing import FrozenSet, Iterable

from ...models.db_models import Role
from ..action_hub.errors import AuthorizationFailure
from .identity import Identity


# Roles that may act on any account's Action Items
ELEVATED_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.MANAGER})

ALL_ROLES: FrozenSet[Role] = frozenset(Role)


class Operation(str, Enum):
    """Operations gated by role."""
    VIEW_ITEM = "view_item"
    FLAG = "flag"
    FOLLOW = "follow"
    UPDATE_STATUS = "update_status"
    RESOLVE_ITEM = "resolve_item"
    SET_TAB = "set_tab"
    ADD_NOTE = "add_note"
    ADD_GUESTS = "add_guests"
    NOTIFY_GUESTS = "notify_guests"
    NOTIFY_TEAM = "notify_team"
    VIEW_LOGS = "view_logs"


OPERATION_ROLES = {
    Operation.VIEW_ITEM: ALL_ROLES,
    Operation.FLAG: ALL_ROLES,
    Operation.FOLLOW: ALL_ROLES,
    Operation.UPDATE_STATUS: ALL_ROLES,
    Operation.RESOLVE_ITEM: ELEVATED_ROLES,
    Operation.SET_TAB: ALL_ROLES,
    Operation.ADD_NOTE: ALL_ROLES,
    Operation.ADD_GUESTS: ALL_ROLES,
    Operation.NOTIFY_GUESTS: ALL_ROLES,
    Operation.NOTIFY_TEAM: ALL_ROLES,
    Operation.VIEW_LOGS: ALL_ROLES,
}

# Operations that additionally require the primary account to be premium
PREMIUM_OPERATIONS: FrozenSet[Operation] = frozenset({Operation.NOTIFY_TEAM})


def effective_role(identity: Identity) -> Role:
    return identity.effective_role


def is_elevated(identity: Identity) -> bool:
    return effective_role(identity) in ELEVATED_ROLES


def require_role(identity: Identity, allowed: Iterable[Role]) -> None:
    """Raise unless the effective role is in the allowed set."""
    allowed = frozenset(allowed)
    actual = effective_role(identity)
    if actual not in allowed:
        raise AuthorizationFailure(
            AuthorizationFailure.ROLE_INSUFFICIENT,
            message=f"Role '{actual.value}' may not perform this action",
            required=[r.value for r in allowed],
            actual=actual.value,
        )


def require_operation(identity: Identity, operation: Operation) -> None:
    """Role gate (and premium gate where applicable) for a named operation."""
    require_role(identity, OPERATION_ROLES[operation])
    if operation in PREMIUM_OPERATIONS:
        require_premium(identity)


def require_premium(identity: Identity) -> None:
    """Premium is a property of the primary account; collaborators inherit it."""
    if not identity.is_premium:
        raise AuthorizationFailure(
            AuthorizationFailure.PREMIUM_REQUIRED,
            message="This feature requires a premium subscription",
            required=["premium"],
            actual="free",
        )


def can_access_item(identity: Identity, owner_id: str) -> bool:
    return owner_id == identity.user_id or is_elevated(identity)


def require_owner_or_elevated(identity: Identity, owner_id: str) -> None:
    if not can_access_item(identity, owner_id):
        raise AuthorizationFailure(
            AuthorizationFailure.NOT_OWNER,
            message="You do not have access to this Action Item",
            required=[r.value for r in ELEVATED_ROLES],
            actual=effective_role(identity).value,
        )
