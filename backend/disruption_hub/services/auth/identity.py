"""
Resolved request identity.

Built by the token authority from the live account (and collaborator) rows,
never from token claims alone.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ...models.db_models import Role, AccountStatus


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
    role: Role
    is_premium: bool
    status: AccountStatus
    token_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    # Present only when a collaborator is acting on behalf of the account
    collaborator_email: Optional[str] = None
    collaborator_role: Optional[Role] = None
    collaborator_name: Optional[str] = None

    @property
    def is_collaborator(self) -> bool:
        return self.collaborator_email is not None

    @property
    def effective_role(self) -> Role:
        """Collaborator role when acting as a collaborator, else the account role."""
        if self.is_collaborator and self.collaborator_role is not None:
            return self.collaborator_role
        return self.role

    @property
    def actor_email(self) -> str:
        return self.collaborator_email or self.email

    def to_dict(self) -> dict:
        data = {
            "id": self.user_id,
            "email": self.email,
            "role": self.role.value,
            "isPremium": self.is_premium,
            "status": self.status.value,
            "effectiveRole": self.effective_role.value,
            "isCollaborator": self.is_collaborator,
        }
        if self.is_collaborator:
            data["collaborator"] = {
                "email": self.collaborator_email,
                "role": self.collaborator_role.value if self.collaborator_role else None,
                "name": self.collaborator_name,
            }
        return data
