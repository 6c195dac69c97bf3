"""Disruption Hub - Data Models"""
from .db_models import (
    # Enums
    Role, AccountStatus, CollaboratorStatus, ItemStatus, ActiveTab,
    ActionType, ActorType, NotificationType, COLLABORATOR_ROLES,
    # Tables
    UserDB, CollaboratorDB, RevokedTokenDB, AlertDB, ActionItemDB,
    GuestDB, NoteDB, ActionLogDB, NotificationDB, AuditLogDB,
)

__all__ = [
    "Role", "AccountStatus", "CollaboratorStatus", "ItemStatus", "ActiveTab",
    "ActionType", "ActorType", "NotificationType", "COLLABORATOR_ROLES",
    "UserDB", "CollaboratorDB", "RevokedTokenDB", "AlertDB", "ActionItemDB",
    "GuestDB", "NoteDB", "ActionLogDB", "NotificationDB", "AuditLogDB",
]
