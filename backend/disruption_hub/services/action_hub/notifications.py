"""
Notification Dispatcher

Fans a message out to an Action Item's guests or to the owning account's
team members.

Sends run concurrently on a thread pool and are joined before anything is
persisted. The item row is not locked during sending; it is locked only for
the short write that records per-recipient outcomes and the single aggregate
log entry. A partial or total mail outage produces a report, not an exception.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    ActionItemDB, CollaboratorDB, NotificationDB,
    ActionType, CollaboratorStatus, NotificationType, Role,
)
from ..auth.identity import Identity
from ..auth.policy import require_owner_or_elevated
from .errors import InvalidInput
from .events import ActionItemEventBus, event_bus
from .mail import MailTransport, default_transport
from .serializers import serialize_alert
from .store import ActionItemStore, transaction

logger = logging.getLogger(__name__)


# =============================================================================
# REPORTS
# =============================================================================

@dataclass
class RecipientResult:
    email: str
    name: Optional[str]
    success: bool
    recipient_id: Optional[Any] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"email": self.email, "success": self.success}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DispatchReport:
    attempted: int
    results: List[RecipientResult] = field(default_factory=list)
    link: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    @property
    def summary(self) -> str:
        return f"{self.succeeded} of {self.attempted} delivered"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "summary": self.summary,
            "emailResults": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class _Recipient:
    recipient_id: Any
    email: str
    name: Optional[str]
    role: Optional[str] = None


def team_detail(count: int, managers_only: bool) -> str:
    noun = "manager" if managers_only else "team member"
    return f"Sent notification to {count} {noun}{'' if count == 1 else 's'}"


class NotificationDispatcher:

    def __init__(
        self,
        db: Session,
        transport: Optional[MailTransport] = None,
        max_workers: int = config.NOTIFY_MAX_WORKERS,
        frontend_url: str = config.FRONTEND_URL,
        bus: ActionItemEventBus = event_bus,
    ):
        self.db = db
        self.transport = transport or default_transport()
        self.max_workers = max(1, max_workers)
        self.frontend_url = frontend_url.rstrip("/")
        self.store = ActionItemStore(db, bus=bus)

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    def _send_one(self, recipient: _Recipient, subject_context: str, body: str,
                  payload: Dict[str, Any]) -> RecipientResult:
        try:
            ok = bool(self.transport.send(recipient.email, recipient.name, subject_context, body, payload))
        except Exception as e:
            logger.warning(f"Mail transport raised for {recipient.email}: {e}")
            return RecipientResult(recipient.email, recipient.name, False, recipient.recipient_id, str(e))

        if not ok:
            logger.warning(f"Mail transport reported failure for {recipient.email}")
            return RecipientResult(recipient.email, recipient.name, False, recipient.recipient_id,
                                   "delivery failed")
        logger.info(f"Notification delivered to {recipient.email}")
        return RecipientResult(recipient.email, recipient.name, True, recipient.recipient_id)

    def _fan_out(self, recipients: Sequence[_Recipient], subject_context: str, body: str,
                 payload: Dict[str, Any]) -> List[RecipientResult]:
        """Send to every recipient concurrently and wait for all of them. Order is preserved."""
        workers = min(self.max_workers, len(recipients))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._send_one, r, subject_context, body, dict(payload))
                for r in recipients
            ]
            return [f.result() for f in futures]

    def _snapshot(self, item: ActionItemDB) -> Dict[str, Any]:
        payload = serialize_alert(item.alert) if item.alert is not None else {"_id": item.alert_id}
        payload["status"] = item.status.value
        return payload

    # =========================================================================
    # GUESTS
    # =========================================================================

    def notify_guests(
        self,
        identity: Identity,
        item_id: str,
        message: Optional[str],
        guest_ids: Optional[List[Any]] = None,
    ) -> DispatchReport:
        """
        Email guests of an Action Item.

        Targets are the listed guest ids, or every guest not yet notified.
        Only guests whose send succeeded are marked notified.
        """
        if not isinstance(message, str) or not message.strip():
            raise InvalidInput("Notification message is required")

        item = self.store.load_item(item_id)
        require_owner_or_elevated(identity, item.user_id)

        guests = list(item.guests)
        if guest_ids:
            wanted = {str(g) for g in guest_ids}
            targets = [g for g in guests if str(g.id) in wanted]
        else:
            targets = [g for g in guests if not g.notification_sent]
        if not targets:
            raise InvalidInput("No guests to notify")

        recipients = [_Recipient(g.id, g.email, g.name) for g in targets]
        payload = self._snapshot(item)
        subject_context = payload.get("title") or "Alert Notification"
        alert_id = item.alert_id
        owner_id = item.user_id

        # End the read transaction before blocking on mail
        self.db.rollback()

        results = self._fan_out(recipients, subject_context, message, payload)
        report = DispatchReport(attempted=len(recipients), results=results)
        delivered = {r.recipient_id for r in results if r.success}

        details = f"Sent notifications to {report.attempted} guests"
        now = datetime.utcnow()
        with transaction(self.db, f"Guest notification on Action Item {item_id}"):
            item = self.store.load_item(item_id, lock=True)
            for guest in item.guests:
                if guest.id in delivered:
                    guest.notification_sent = True
                    guest.sent_timestamp = now
            item.updated_at = now
            self.store.append_log(item, identity, ActionType.NOTIFY_GUESTS, details)
            self.store.record_audit(identity, "action_item.notify_guests", item.id, details,
                                    attempted=report.attempted, succeeded=report.succeeded)

        logger.info(f"Guest notification for Action Item {item_id}: {report.summary}")
        self.store.publish("notify_guests", item_id, alert_id, owner_id, identity,
                           attempted=report.attempted, succeeded=report.succeeded)
        return report

    # =========================================================================
    # TEAM
    # =========================================================================

    def team_members(self, owner_id: str, managers_only: bool = False) -> List[CollaboratorDB]:
        """The owning account's collaborators that can receive team notifications."""
        owner = self.store.accounts.find_by_id(owner_id)
        members = [
            c for c in (owner.collaborators if owner is not None else [])
            if c.status != CollaboratorStatus.DELETED
        ]
        if not members:
            raise InvalidInput("No team members available to notify")
        if managers_only:
            members = [c for c in members if c.role == Role.MANAGER]
            if not members:
                raise InvalidInput("No team members match the criteria for notification")
        return members

    def notify_team(
        self,
        identity: Identity,
        item_id: str,
        message: Optional[str],
        managers_only: bool = False,
    ) -> DispatchReport:
        """Email the owner's team (or managers only) with a deep link, and record an inbox notification."""
        if not isinstance(message, str) or not message.strip():
            raise InvalidInput("Notification message is required")

        item = self.store.load_item(item_id)
        require_owner_or_elevated(identity, item.user_id)

        members = self.team_members(item.user_id, managers_only)
        recipients = [
            _Recipient(c.id, c.email, c.name, c.role.value if c.role else Role.VIEWER.value)
            for c in members
        ]

        link = f"{self.frontend_url}/action-hub/alert/{item.alert_id}"
        payload = self._snapshot(item)
        payload["link"] = link
        subject_context = "Management Notification" if managers_only else "Team Notification"
        alert_id = item.alert_id
        owner_id = item.user_id

        self.db.rollback()

        results = self._fan_out(recipients, subject_context, message, payload)
        report = DispatchReport(attempted=len(recipients), results=results, link=link)

        details = team_detail(report.attempted, managers_only)
        with transaction(self.db, f"Team notification on Action Item {item_id}"):
            item = self.store.load_item(item_id, lock=True)
            self.db.add(NotificationDB(
                id=str(uuid4()),
                user_id=owner_id,
                sent_by=identity.user_id,
                sent_by_email=identity.actor_email,
                title=subject_context,
                message=message,
                recipients=[r.email for r in recipients],
                related_alert_id=alert_id,
                notification_type=NotificationType.MANAGEMENT if managers_only else NotificationType.TEAM,
            ))
            item.updated_at = datetime.utcnow()
            self.store.append_log(item, identity, ActionType.NOTIFY_GUESTS, details)
            self.store.record_audit(identity, "action_item.notify_team", item.id, details,
                                    attempted=report.attempted, succeeded=report.succeeded,
                                    managers_only=managers_only)

        logger.info(f"Team notification for Action Item {item_id}: {report.summary}")
        self.store.publish("notify_team", item_id, alert_id, owner_id, identity,
                           attempted=report.attempted, succeeded=report.succeeded,
                           managers_only=managers_only)
        return report
