"""
Status Lifecycle Engine

States: new -> in_progress -> handled.

Manual transitions may move between any two states. The only automatic
transition is passive escalation: an item still "new" after
AUTO_ESCALATE_AFTER_HOURS moves to "in_progress" the next time it is read.

Escalation uses a conditional UPDATE (WHERE status = 'new') so concurrent
readers race on the row, not on a read-modify-write. Only the reader whose
update affected the row appends the system log entry.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import ActionItemDB, ActionLogDB, ItemStatus, ActionType, ActorType
from ..audit import AuditSink
from .errors import DependencyFailure, InvalidInput
from .events import ActionItemEvent, event_bus

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

TRANSITION_MATRIX = {
    ItemStatus.NEW: {ItemStatus.NEW, ItemStatus.IN_PROGRESS, ItemStatus.HANDLED},
    ItemStatus.IN_PROGRESS: {ItemStatus.NEW, ItemStatus.IN_PROGRESS, ItemStatus.HANDLED},
    ItemStatus.HANDLED: {ItemStatus.NEW, ItemStatus.IN_PROGRESS, ItemStatus.HANDLED},
}

# No automatic transition leaves these states
TERMINAL_FOR_AUTOMATION = frozenset({ItemStatus.HANDLED})

STATUS_DETAILS = {
    ItemStatus.NEW: "Marked alert as new",
    ItemStatus.IN_PROGRESS: "Marked alert as in progress",
    ItemStatus.HANDLED: "Marked alert as handled",
}

ESCALATION_DETAIL = "Automatically moved to in progress after {hours} hours"


def parse_status(value) -> ItemStatus:
    try:
        return ItemStatus(value)
    except ValueError:
        raise InvalidInput("Invalid status value")


def can_transition(current: ItemStatus, target: ItemStatus) -> bool:
    return target in TRANSITION_MATRIX.get(current, set())


def status_detail(status: ItemStatus) -> str:
    return STATUS_DETAILS[status]


def log_type_for(status: ItemStatus) -> ActionType:
    return ActionType.MARK_HANDLED if status == ItemStatus.HANDLED else ActionType.EDIT


class StatusLifecycleEngine:
    """Passive age-based escalation, applied inline on reads."""

    def __init__(self, db: Session, escalate_after_hours: int = config.AUTO_ESCALATE_AFTER_HOURS):
        self.db = db
        self.escalate_after = timedelta(hours=escalate_after_hours)
        self.escalate_after_hours = escalate_after_hours
        self.audit = AuditSink(db)

    def is_stale(self, item: ActionItemDB, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        if item.status in TERMINAL_FOR_AUTOMATION:
            return False
        return (
            item.status == ItemStatus.NEW
            and item.created_at is not None
            and now - item.created_at >= self.escalate_after
        )

    def escalate_if_stale(self, item: ActionItemDB, now: Optional[datetime] = None) -> bool:
        """
        Move a stale "new" item to "in_progress".

        Returns True only for the caller whose conditional update won.
        """
        now = now or datetime.utcnow()
        if not self.is_stale(item, now):
            return False

        try:
            affected = self.db.query(ActionItemDB).filter(
                ActionItemDB.id == item.id,
                ActionItemDB.status == ItemStatus.NEW,
            ).update(
                {ActionItemDB.status: ItemStatus.IN_PROGRESS, ActionItemDB.updated_at: now},
                synchronize_session=False,
            )

            if affected != 1:
                # Another reader already escalated it
                self.db.rollback()
                self.db.refresh(item)
                return False

            self.db.add(ActionLogDB(
                action_item_id=item.id,
                actor_type=ActorType.SYSTEM,
                actor_id=None,
                action_type=ActionType.EDIT,
                details=ESCALATION_DETAIL.format(hours=self.escalate_after_hours),
                timestamp=now,
            ))
            self.audit.record(
                actor_id=None,
                action="action_item.auto_escalate",
                target_type="action_item",
                target_id=item.id,
                detail="new -> in_progress",
                metadata={"alert_id": item.alert_id},
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Escalation failed for Action Item {item.id}: {e}")
            raise DependencyFailure("Action Item store unavailable") from e

        self.db.refresh(item)
        logger.info(f"Action Item {item.id} auto-escalated to in_progress")
        event_bus.publish(ActionItemEvent(
            kind="escalate",
            action_item_id=item.id,
            alert_id=item.alert_id,
            user_id=item.user_id,
            payload={"status": ItemStatus.IN_PROGRESS.value},
        ))
        return True
