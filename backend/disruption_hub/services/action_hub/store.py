"""
Action Item Store

Owns every mutation of an Action Item. Each operation:
1. locks the item row (SELECT ... FOR UPDATE),
2. applies the change and appends exactly one action log entry
   (tab changes excepted) plus one audit entry,
3. commits, or rolls back to the pre-operation state on any failure,
4. publishes an ActionItemEvent after the commit.

Alert engagement totals are recomputed in a second short transaction after
the item commit (full recount, so ordering between concurrent toggles on the
same alert does not matter).
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    ActionItemDB, ActionLogDB, GuestDB, NoteDB, UserDB, CollaboratorDB,
    ItemStatus, ActiveTab, ActionType, ActorType,
)
from ..audit import AuditSink
from ..auth.identity import Identity
from ..auth.policy import require_owner_or_elevated
from ..directories import AccountDirectory, AlertDirectory
from .engagement import EngagementAggregator
from .errors import ActionHubError, DependencyFailure, InvalidInput, NotFound
from .events import ActionItemEvent, ActionItemEventBus, event_bus
from .lifecycle import StatusLifecycleEngine, can_transition, parse_status, status_detail, log_type_for

logger = logging.getLogger(__name__)


@contextmanager
def transaction(db: Session, what: str):
    """Commit on success. Any failure rolls back and releases the row lock."""
    try:
        yield
        db.commit()
    except ActionHubError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{what} failed: {e}")
        raise DependencyFailure("Action Item store unavailable") from e


# =============================================================================
# RESULT OBJECTS
# =============================================================================

@dataclass
class FlagResult:
    item: ActionItemDB
    is_flagged: bool
    flag_count: int
    created: bool = False


@dataclass
class FollowResult:
    item: Optional[ActionItemDB]  # None when the unfollow deleted the item
    following: bool
    number_of_follows: int
    deleted: bool = False
    created: bool = False


@dataclass
class StatusResult:
    item: ActionItemDB
    previous_status: ItemStatus
    status: ItemStatus


class ActionItemStore:
    """Per-(user, alert) collaboration records and their audit trail."""

    def __init__(
        self,
        db: Session,
        lifecycle: Optional[StatusLifecycleEngine] = None,
        bus: ActionItemEventBus = event_bus,
    ):
        self.db = db
        self.accounts = AccountDirectory(db)
        self.alerts = AlertDirectory(db)
        self.engagement = EngagementAggregator(db)
        self.lifecycle = lifecycle or StatusLifecycleEngine(db)
        self.audit = AuditSink(db)
        self.bus = bus

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _query_item(self, item_id: str, lock: bool = False) -> Optional[ActionItemDB]:
        query = self.db.query(ActionItemDB).filter(ActionItemDB.id == item_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def load_item(self, item_id: str, lock: bool = False) -> ActionItemDB:
        try:
            item = self._query_item(item_id, lock=lock)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Action Item lookup failed for {item_id}: {e}")
            raise DependencyFailure("Action Item store unavailable") from e
        if item is None:
            raise NotFound("Action Hub item not found")
        return item

    def _lock_pair(self, user_id: str, alert_id: str) -> Optional[ActionItemDB]:
        return self.db.query(ActionItemDB).filter(
            ActionItemDB.user_id == user_id,
            ActionItemDB.alert_id == alert_id,
        ).with_for_update().first()

    def _require_alert(self, alert_id: str):
        alert = self.alerts.find_by_id(alert_id)
        if alert is None:
            raise NotFound("Alert not found", alert_exists=False)
        return alert

    def append_log(
        self,
        item: ActionItemDB,
        identity: Identity,
        action_type: ActionType,
        details: str,
    ) -> ActionLogDB:
        log = ActionLogDB(
            action_item_id=item.id,
            actor_type=ActorType.USER,
            actor_id=identity.user_id,
            actor_email=identity.collaborator_email,
            action_type=action_type,
            details=details,
            timestamp=datetime.utcnow(),
        )
        self.db.add(log)
        return log

    def record_audit(self, identity: Identity, action: str, item_id: str, detail: str, **metadata):
        self.audit.record(
            actor_id=identity.user_id,
            actor_email=identity.actor_email,
            action=action,
            target_type="action_item",
            target_id=item_id,
            detail=detail,
            metadata=metadata or None,
        )

    def publish(self, kind: str, item_id: str, alert_id: str, user_id: str,
                identity: Optional[Identity] = None, **payload):
        self.bus.publish(ActionItemEvent(
            kind=kind,
            action_item_id=item_id,
            alert_id=alert_id,
            user_id=user_id,
            actor_id=identity.user_id if identity else None,
            payload=payload,
        ))

    def _new_item(self, user_id: str, alert_id: str, flagged: bool, following: bool) -> ActionItemDB:
        now = datetime.utcnow()
        item = ActionItemDB(
            id=str(uuid4()),
            user_id=user_id,
            alert_id=alert_id,
            status=ItemStatus.NEW,
            flagged=flagged,
            is_following=following,
            current_active_tab=ActiveTab.NOTIFY_GUESTS,
            created_at=now,
            updated_at=now,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def _with_create_retry(self, operation, *args):
        """Run a get-or-create operation, retrying once if a concurrent create won the race."""
        try:
            return operation(*args)
        except DependencyFailure as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            logger.info("Concurrent Action Item creation detected, retrying on existing row")
            return operation(*args)

    # =========================================================================
    # FLAG
    # =========================================================================

    def toggle_flag(self, identity: Identity, alert_id: str) -> FlagResult:
        """Create the item flagged, or toggle its flag. Returns the recounted flag total."""
        self._require_alert(alert_id)
        item, created = self._with_create_retry(self._toggle_flag_once, identity, alert_id)

        with transaction(self.db, f"Flag recount for alert {alert_id}"):
            flag_count = self.engagement.recount_flags(alert_id)

        self.db.refresh(item)
        self.publish("flag", item.id, alert_id, item.user_id, identity,
                     flagged=item.flagged, flag_count=flag_count)
        return FlagResult(item=item, is_flagged=bool(item.flagged), flag_count=flag_count, created=created)

    def _toggle_flag_once(self, identity: Identity, alert_id: str) -> Tuple[ActionItemDB, bool]:
        with transaction(self.db, f"Flag toggle on alert {alert_id}"):
            item = self._lock_pair(identity.user_id, alert_id)
            created = item is None
            if created:
                item = self._new_item(identity.user_id, alert_id, flagged=True, following=False)
                details = "Added alert to Action Hub"
            else:
                item.flagged = not item.flagged
                item.updated_at = datetime.utcnow()
                details = "Flagged alert" if item.flagged else "Unflagged alert"

            self.append_log(item, identity, ActionType.FLAG, details)
            self.record_audit(identity, "action_item.flag" if item.flagged else "action_item.unflag",
                                item.id, details, alert_id=alert_id)
        return item, created

    # =========================================================================
    # FOLLOW
    # =========================================================================

    def toggle_follow(self, identity: Identity, alert_id: str) -> FollowResult:
        """
        Create the item following, or toggle following.

        Unfollowing an unflagged item deletes it; a flagged item is kept with
        is_following=False.
        """
        self._require_alert(alert_id)
        item, following, deleted, created = self._with_create_retry(
            self._toggle_follow_once, identity, alert_id
        )

        with transaction(self.db, f"Follow recount for alert {alert_id}"):
            count, _ = self.engagement.recount_follows(alert_id)
            self.engagement.mirror_follow(identity.user_id, alert_id, following)

        # A deleted item is detached; its loaded id is still readable
        item_id = item.id
        if deleted:
            item = None
        else:
            self.db.refresh(item)
        self.publish("delete" if deleted else "follow", item_id, alert_id, identity.user_id, identity,
                     following=following, number_of_follows=count)
        logger.info(f"Follow toggled on alert {alert_id} by {identity.user_id}: following={following}")
        return FollowResult(item=item, following=following, number_of_follows=count,
                            deleted=deleted, created=created)

    def _toggle_follow_once(self, identity: Identity, alert_id: str):
        deleted = False
        created = False
        with transaction(self.db, f"Follow toggle on alert {alert_id}"):
            item = self._lock_pair(identity.user_id, alert_id)

            if item is None:
                item = self._new_item(identity.user_id, alert_id, flagged=False, following=True)
                created = True
                following = True
                self.append_log(item, identity, ActionType.FOLLOW, "Started following alert")
                self.record_audit(identity, "action_item.follow", item.id, "Started following alert",
                                  alert_id=alert_id)

            elif not item.is_following:
                item.is_following = True
                item.updated_at = datetime.utcnow()
                following = True
                self.append_log(item, identity, ActionType.FOLLOW, "Started following alert")
                self.record_audit(identity, "action_item.follow", item.id, "Started following alert",
                                  alert_id=alert_id)

            elif item.flagged:
                following = False
                item.is_following = False
                item.updated_at = datetime.utcnow()
                self.append_log(item, identity, ActionType.FOLLOW, "Stopped following alert")
                self.record_audit(identity, "action_item.unfollow", item.id, "Stopped following alert",
                                  alert_id=alert_id)

            else:
                following = False
                self._delete_if_unflagged(item)
                deleted = True
                self.record_audit(identity, "action_item.delete", item.id,
                                  "Stopped following unflagged alert", alert_id=alert_id)

        return item, following, deleted, created

    def _delete_if_unflagged(self, item: ActionItemDB) -> None:
        """
        Single conditional delete (WHERE id = ? AND flagged = false).

        No observable moment exists where the item is both unflagged and
        unfollowed: either the delete wins or the row is kept.
        """
        item_id = item.id
        for child in (GuestDB, NoteDB, ActionLogDB):
            self.db.query(child).filter(child.action_item_id == item_id).delete(synchronize_session=False)

        affected = self.db.query(ActionItemDB).filter(
            ActionItemDB.id == item_id,
            ActionItemDB.flagged.is_(False),
        ).delete(synchronize_session=False)

        if affected != 1:
            raise DependencyFailure(f"Conditional delete of Action Item {item_id} affected {affected} rows")

        self.db.expunge(item)

    # =========================================================================
    # STATUS
    # =========================================================================

    def set_status(
        self,
        identity: Identity,
        item_id: str,
        new_status,
        action_type: Optional[ActionType] = None,
        details: Optional[str] = None,
    ) -> StatusResult:
        """Manual status change. handled_by/handled_at are stamped only on entry into HANDLED."""
        target = parse_status(new_status)

        with transaction(self.db, f"Status change on Action Item {item_id}"):
            item = self.load_item(item_id, lock=True)
            require_owner_or_elevated(identity, item.user_id)

            previous = item.status
            if not can_transition(previous, target):
                raise InvalidInput(f"Cannot move from {previous.value} to {target.value}")
            now = datetime.utcnow()
            item.status = target
            item.updated_at = now
            if target == ItemStatus.HANDLED:
                item.handled_by = identity.user_id
                item.handled_at = now

            details = details or status_detail(target)
            self.append_log(item, identity, action_type or log_type_for(target), details)
            self.record_audit(identity, "action_item.status", item.id, details,
                              previous_status=previous.value, new_status=target.value)

        self.db.refresh(item)
        logger.info(f"Action Item {item_id} status {previous.value} -> {target.value}")
        self.publish("status", item.id, item.alert_id, item.user_id, identity,
                     previous_status=previous.value, status=target.value)
        return StatusResult(item=item, previous_status=previous, status=target)

    def resolve(self, identity: Identity, item_id: str) -> StatusResult:
        """Elevated shortcut: mark handled with a resolve log entry."""
        return self.set_status(
            identity, item_id, ItemStatus.HANDLED,
            action_type=ActionType.RESOLVE, details="Resolved alert",
        )

    # =========================================================================
    # TAB / NOTES / GUESTS
    # =========================================================================

    def set_active_tab(self, identity: Identity, item_id: str, tab) -> ActionItemDB:
        """UI state only; not logged."""
        try:
            target = ActiveTab(tab)
        except ValueError:
            raise InvalidInput("Invalid tab name")

        with transaction(self.db, f"Tab change on Action Item {item_id}"):
            item = self.load_item(item_id, lock=True)
            require_owner_or_elevated(identity, item.user_id)
            item.current_active_tab = target

        self.db.refresh(item)
        return item

    def add_note(self, identity: Identity, item_id: str, content: Optional[str]) -> NoteDB:
        if not isinstance(content, str) or not content.strip():
            raise InvalidInput("Note content is required")

        with transaction(self.db, f"Add note on Action Item {item_id}"):
            item = self.load_item(item_id, lock=True)
            require_owner_or_elevated(identity, item.user_id)

            note = NoteDB(
                action_item_id=item.id,
                content=content,
                created_by=identity.user_id,
                author_email=identity.collaborator_email,
                created_at=datetime.utcnow(),
            )
            self.db.add(note)
            item.updated_at = datetime.utcnow()
            self.append_log(item, identity, ActionType.NOTE_ADDED, "Added a new note")
            self.record_audit(identity, "action_item.note", item.id, "Added a new note",
                              note_length=len(content))

        self.db.refresh(note)
        self.publish("note", item.id, item.alert_id, item.user_id, identity, note_id=note.id)
        return note

    @staticmethod
    def valid_guests(guests: Optional[List[Any]]) -> List[Dict[str, Any]]:
        """Entries with a non-empty string email; everything else is dropped."""
        valid = []
        for guest in guests or []:
            if not isinstance(guest, dict):
                continue
            email = guest.get("email")
            if not isinstance(email, str) or not email.strip():
                continue
            name = guest.get("name")
            valid.append({"email": email.strip(), "name": name if isinstance(name, str) else None})
        return valid

    def add_guests(self, identity: Identity, item_id: str, guests: Optional[List[Any]]) -> List[GuestDB]:
        """
        Append well-formed guests. Malformed entries are skipped, not rejected;
        a list with no usable entry is rejected with no mutation.
        """
        if not guests or not isinstance(guests, list):
            raise InvalidInput("Guest list is required")
        valid = self.valid_guests(guests)
        if not valid:
            raise InvalidInput("No valid guests provided")

        added = []
        details = f"Added {len(valid)} guests for notification"
        with transaction(self.db, f"Add guests on Action Item {item_id}"):
            item = self.load_item(item_id, lock=True)
            require_owner_or_elevated(identity, item.user_id)

            for entry in valid:
                guest = GuestDB(
                    action_item_id=item.id,
                    email=entry["email"],
                    name=entry["name"],
                    notification_sent=False,
                    created_at=datetime.utcnow(),
                )
                self.db.add(guest)
                added.append(guest)
            item.updated_at = datetime.utcnow()
            self.append_log(item, identity, ActionType.NOTIFY_GUESTS, details)
            self.record_audit(identity, "action_item.guests", item.id, details, guest_count=len(valid))

        for guest in added:
            self.db.refresh(guest)
        self.publish("guests", item.id, item.alert_id, item.user_id, identity, guest_count=len(added))
        return added

    # =========================================================================
    # READS
    # =========================================================================

    def list_for_user(self, identity: Identity) -> List[ActionItemDB]:
        """The caller's account items, most recently updated first. Stale items escalate on read."""
        try:
            items = self.db.query(ActionItemDB).filter(
                ActionItemDB.user_id == identity.user_id
            ).order_by(ActionItemDB.updated_at.desc()).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Action Item list failed for {identity.user_id}: {e}")
            raise DependencyFailure("Action Item store unavailable") from e

        visible = []
        for item in items:
            if item.alert is None:
                logger.error(f"Action Item {item.id} references missing alert {item.alert_id}")
                continue
            self.lifecycle.escalate_if_stale(item)
            visible.append(item)
        # Escalation bumps updated_at
        visible.sort(key=lambda i: i.updated_at or datetime.min, reverse=True)
        return visible

    def get_for_identity(
        self, identity: Identity, id_or_alert_id: str
    ) -> Tuple[ActionItemDB, List[CollaboratorDB]]:
        """
        Resolve by Action Item id (owner or elevated), else by alert id for the
        caller's own account. Returns the item and the owner's team members.
        """
        try:
            item = self._query_item(id_or_alert_id)
            if item is None:
                item = self.db.query(ActionItemDB).filter(
                    ActionItemDB.alert_id == id_or_alert_id,
                    ActionItemDB.user_id == identity.user_id,
                ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Action Item lookup failed for {id_or_alert_id}: {e}")
            raise DependencyFailure("Action Item store unavailable") from e

        if item is None:
            if self.alerts.find_by_id(id_or_alert_id) is not None:
                raise NotFound(
                    "Action Hub item not found for this alert, follow the alert first",
                    alert_exists=True,
                )
            raise NotFound("Action Hub item not found", alert_exists=False)

        require_owner_or_elevated(identity, item.user_id)
        self.lifecycle.escalate_if_stale(item)

        owner = self.accounts.find_by_id(item.user_id)
        team = list(owner.collaborators) if owner is not None else []
        return item, team

    def get_logs(self, identity: Identity, item_id: str) -> List[Tuple[ActionLogDB, Optional[UserDB]]]:
        """Log entries newest first, each paired with its author account (if any)."""
        item = self.load_item(item_id)
        require_owner_or_elevated(identity, item.user_id)

        logs = list(item.logs)
        actor_ids = {log.actor_id for log in logs if log.actor_id}
        authors = {}
        if actor_ids:
            try:
                authors = {
                    user.id: user
                    for user in self.db.query(UserDB).filter(UserDB.id.in_(actor_ids)).all()
                }
            except SQLAlchemyError as e:
                self.db.rollback()
                raise DependencyFailure("Account directory unavailable") from e

        logs.sort(key=lambda log: (log.timestamp or datetime.min, log.id), reverse=True)
        return [(log, authors.get(log.actor_id)) for log in logs]
