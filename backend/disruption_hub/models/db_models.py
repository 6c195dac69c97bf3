"""
Disruption Hub - SQLAlchemy ORM Models
PostgreSQL database models for accounts, alerts and the Action Hub
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, ForeignKey, Boolean,
    Enum as SQLEnum, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS FOR ACCOUNTS / AUTHORIZATION
# =============================================================================

class Role(str, Enum):
    """Closed set of roles. Collaborators may only hold MANAGER or VIEWER."""
    USER = "user"
    ADMIN = "admin"
    MANAGER = "manager"
    VIEWER = "viewer"
    EDITOR = "editor"


COLLABORATOR_ROLES = frozenset({Role.MANAGER, Role.VIEWER})


class AccountStatus(str, Enum):
    """Primary account status."""
    ACTIVE = "active"
    RESTRICTED = "restricted"
    PENDING = "pending"
    DELETED = "deleted"


class CollaboratorStatus(str, Enum):
    """Collaborator (team member) status."""
    INVITED = "invited"
    ACTIVE = "active"
    RESTRICTED = "restricted"
    DELETED = "deleted"


# =============================================================================
# ENUMS FOR THE ACTION HUB
# =============================================================================

class ItemStatus(str, Enum):
    """Lifecycle states of an Action Item."""
    NEW = "new"
    IN_PROGRESS = "in_progress"
    HANDLED = "handled"


class ActiveTab(str, Enum):
    """Tab the Action Item was last left on."""
    NOTIFY_GUESTS = "notify_guests"
    ADD_NOTES = "add_notes"


class ActionType(str, Enum):
    """Action log entry types."""
    FOLLOW = "follow"
    FLAG = "flag"
    RESOLVE = "resolve"
    NOTE_ADDED = "note_added"
    NOTIFY_GUESTS = "notify_guests"
    EDIT = "edit"
    MARK_HANDLED = "mark_handled"


class ActorType(str, Enum):
    """Who performed a logged action."""
    USER = "USER"
    SYSTEM = "SYSTEM"


class NotificationType(str, Enum):
    """In-app notification kinds."""
    TEAM = "team_notification"
    MANAGEMENT = "management_notification"


# =============================================================================
# ACCOUNTS
# =============================================================================

class UserDB(Base):
    """Primary account. Owns collaborators and Action Items."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    role = Column(SQLEnum(Role), nullable=False, default=Role.USER)
    status = Column(SQLEnum(AccountStatus), nullable=False, default=AccountStatus.ACTIVE)
    is_premium = Column(Boolean, nullable=False, default=False)

    # Alert ids the account follows - mirrored from Action Item follow toggles
    followed_alerts = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    collaborators = relationship(
        "CollaboratorDB", back_populates="account",
        cascade="all, delete-orphan", order_by="CollaboratorDB.created_at",
    )

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or self.email


class CollaboratorDB(Base):
    """
    Secondary login embedded under a primary account.
    Has its own role and status but no identity of its own.
    """
    __tablename__ = "collaborators"
    __table_args__ = (
        UniqueConstraint("user_id", "email", name="uq_collaborator_account_email"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    role = Column(SQLEnum(Role), nullable=False, default=Role.VIEWER)
    status = Column(SQLEnum(CollaboratorStatus), nullable=False, default=CollaboratorStatus.INVITED)
    password_hash = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    account = relationship("UserDB", back_populates="collaborators")


class RevokedTokenDB(Base):
    """Revoked token ids. Rows expire with the token they revoke."""
    __tablename__ = "revoked_tokens"

    jti = Column(String(36), primary_key=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    revoked_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# ALERTS (owned by the alert service - only the fields the Action Hub reads)
# =============================================================================

class AlertDB(Base):
    """Disruption alert. Engagement fields are derived from Action Items."""
    __tablename__ = "alerts"

    id = Column(String(36), primary_key=True)  # UUID
    title = Column(String(500), nullable=False)
    summary = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    city = Column(String(200), nullable=True)
    expected_start = Column(DateTime, nullable=True)
    expected_end = Column(DateTime, nullable=True)

    # Derived engagement - recomputed from action_items, never incremented
    number_of_follows = Column(Integer, nullable=False, default=0)
    followed_by = Column(JSON, nullable=False, default=list)
    flagged_by = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# ACTION HUB
# =============================================================================

class ActionItemDB(Base):
    """Per-(user, alert) collaboration record."""
    __tablename__ = "action_items"
    __table_args__ = (
        UniqueConstraint("user_id", "alert_id", name="uq_action_item_user_alert"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    alert_id = Column(String(36), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(SQLEnum(ItemStatus), nullable=False, default=ItemStatus.NEW)
    is_following = Column(Boolean, nullable=False, default=False)
    flagged = Column(Boolean, nullable=False, default=False)
    current_active_tab = Column(SQLEnum(ActiveTab), nullable=False, default=ActiveTab.NOTIFY_GUESTS)

    # Set only on transition into HANDLED
    handled_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    handled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    alert = relationship("AlertDB")
    owner = relationship("UserDB", foreign_keys=[user_id])
    guests = relationship(
        "GuestDB", back_populates="item",
        cascade="all, delete-orphan", order_by="GuestDB.id",
    )
    notes = relationship(
        "NoteDB", back_populates="item",
        cascade="all, delete-orphan", order_by="NoteDB.id",
    )
    logs = relationship(
        "ActionLogDB", back_populates="item",
        cascade="all, delete-orphan", order_by="ActionLogDB.id",
    )


class GuestDB(Base):
    """Guest to be notified about an Action Item's alert."""
    __tablename__ = "action_item_guests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_item_id = Column(String(36), ForeignKey("action_items.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(200), nullable=True)
    notification_sent = Column(Boolean, nullable=False, default=False)
    sent_timestamp = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    item = relationship("ActionItemDB", back_populates="guests")


class NoteDB(Base):
    """Free-text note on an Action Item."""
    __tablename__ = "action_item_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_item_id = Column(String(36), ForeignKey("action_items.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_by = Column(String(36), nullable=False)
    author_email = Column(String(255), nullable=True)  # Collaborator attribution
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)

    item = relationship("ActionItemDB", back_populates="notes")


class ActionLogDB(Base):
    """Action log entry. One per Action Item mutation (append-only)."""
    __tablename__ = "action_item_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_item_id = Column(String(36), ForeignKey("action_items.id", ondelete="CASCADE"), nullable=False, index=True)
    actor_type = Column(SQLEnum(ActorType), nullable=False, default=ActorType.USER)
    actor_id = Column(String(36), nullable=True)       # NULL for SYSTEM entries
    actor_email = Column(String(255), nullable=True)   # Collaborator attribution
    action_type = Column(SQLEnum(ActionType), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)

    item = relationship("ActionItemDB", back_populates="logs")


class NotificationDB(Base):
    """In-app inbox notification created by team notify."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sent_by = Column(String(36), nullable=False)
    sent_by_email = Column(String(255), nullable=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    recipients = Column(JSON, nullable=False, default=list)
    related_alert_id = Column(String(36), ForeignKey("alerts.id", ondelete="SET NULL"), nullable=True)
    notification_type = Column(SQLEnum(NotificationType), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class AuditLogDB(Base):
    """Append-only audit trail of state-changing operations."""
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(36), nullable=True, index=True)
    actor_email = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(36), nullable=True, index=True)
    detail = Column(Text, nullable=True)
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
