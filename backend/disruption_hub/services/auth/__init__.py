"""
Token authorization

Token Authority (issue/resolve/revoke), password helpers and the pure
authorization policy over resolved identities.
"""
from .identity import Identity
from .credentials import hash_password, verify_password
from .token_authority import TokenAuthority, ACCESS, REFRESH
from .policy import (
    ELEVATED_ROLES,
    OPERATION_ROLES,
    Operation,
    effective_role,
    is_elevated,
    require_role,
    require_operation,
    require_premium,
    require_owner_or_elevated,
    can_access_item,
)

__all__ = [
    "Identity",
    "hash_password",
    "verify_password",
    "TokenAuthority",
    "ACCESS",
    "REFRESH",
    "ELEVATED_ROLES",
    "OPERATION_ROLES",
    "Operation",
    "effective_role",
    "is_elevated",
    "require_role",
    "require_operation",
    "require_premium",
    "require_owner_or_elevated",
    "can_access_item",
]
