"""
Disruption Hub - Action Hub API Router

Per-user, per-alert collaboration: flag/follow, status, notes, guests,
guest and team notification, action logs.

Ownership (owner or elevated role) is enforced by the store; role and
premium gates are enforced here through the operation policy table.
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require
from ..database import get_db
from ..services.action_hub.errors import ActionHubError
from ..services.action_hub.mail import MailTransport, default_transport
from ..services.action_hub.notifications import NotificationDispatcher
from ..services.action_hub.serializers import (
    serialize_item, serialize_note, serialize_guest, display_log,
)
from ..services.action_hub.store import ActionItemStore
from ..services.auth import Identity, Operation
from .errors import to_http

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/action-hub", tags=["action-hub"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class StatusRequest(BaseModel):
    """Validated by the store: a missing or unknown value is InvalidInput."""
    status: Any = None


class TabRequest(BaseModel):
    tab: Any = None


class NoteRequest(BaseModel):
    content: Any = None


class GuestsRequest(BaseModel):
    """Entries without a usable email are skipped by the store, not rejected here."""
    guests: Any = None


class NotifyGuestsRequest(BaseModel):
    message: Any = None
    guest_ids: Optional[List[Any]] = Field(default=None, alias="guestIds")

    model_config = {"populate_by_name": True}


class NotifyTeamRequest(BaseModel):
    message: Any = None
    managers_only: bool = Field(default=False, alias="managersOnly")

    model_config = {"populate_by_name": True}


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_store(db: Session = Depends(get_db)) -> ActionItemStore:
    return ActionItemStore(db)


def get_mail_transport() -> MailTransport:
    return default_transport()


def get_dispatcher(
    db: Session = Depends(get_db),
    transport: MailTransport = Depends(get_mail_transport),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, transport=transport)


# =============================================================================
# READ ENDPOINTS
# =============================================================================

@router.get("")
def list_action_items(
    identity: Identity = Depends(require(Operation.VIEW_ITEM)),
    store: ActionItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    """
    All Action Items of the caller's account, most recently updated first.
    """
    try:
        items = store.list_for_user(identity)
    except ActionHubError as e:
        raise to_http(e)
    return [serialize_item(item) for item in items]


@router.get("/{item_id}")
def get_action_item(
    item_id: str,
    identity: Identity = Depends(require(Operation.VIEW_ITEM)),
    store: ActionItemStore = Depends(get_store),
) -> Dict[str, Any]:
    """
    Single Action Item by its id, or by alert id for the caller's own account.
    """
    try:
        item, team = store.get_for_identity(identity, item_id)
    except ActionHubError as e:
        raise to_http(e)
    return serialize_item(item, detail=True, team_members=team)


@router.get("/{item_id}/logs")
def get_action_logs(
    item_id: str,
    identity: Identity = Depends(require(Operation.VIEW_LOGS)),
    store: ActionItemStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    """
    Action log, newest first, with display names resolved.
    """
    try:
        entries = store.get_logs(identity, item_id)
    except ActionHubError as e:
        raise to_http(e)
    return [display_log(log, author) for log, author in entries]


# =============================================================================
# FLAG / FOLLOW
# =============================================================================

@router.post("/flag/{alert_id}")
def flag_alert(
    alert_id: str,
    identity: Identity = Depends(require(Operation.FLAG)),
    store: ActionItemStore = Depends(get_store),
):
    try:
        result = store.toggle_flag(identity, alert_id)
    except ActionHubError as e:
        raise to_http(e)
    return {
        "actionHubId": result.item.id,
        "isFlagged": result.is_flagged,
        "flagCount": result.flag_count,
    }


@router.post("/follow/{alert_id}")
def follow_alert(
    alert_id: str,
    identity: Identity = Depends(require(Operation.FOLLOW)),
    store: ActionItemStore = Depends(get_store),
):
    try:
        result = store.toggle_follow(identity, alert_id)
    except ActionHubError as e:
        raise to_http(e)
    return {
        "actionHubId": result.item.id if result.item is not None else None,
        "following": result.following,
        "numberOfFollows": result.number_of_follows,
        "removed": result.deleted,
    }


# =============================================================================
# STATUS / TAB
# =============================================================================

@router.post("/{item_id}/status")
def update_status(
    item_id: str,
    request: StatusRequest,
    identity: Identity = Depends(require(Operation.UPDATE_STATUS)),
    store: ActionItemStore = Depends(get_store),
):
    try:
        result = store.set_status(identity, item_id, request.status)
    except ActionHubError as e:
        raise to_http(e)
    return {
        "message": f"Action Hub item marked as {result.status.value} successfully",
        "status": result.status.value,
        "previousStatus": result.previous_status.value,
    }


@router.post("/{item_id}/resolve")
def resolve_item(
    item_id: str,
    identity: Identity = Depends(require(Operation.RESOLVE_ITEM)),
    store: ActionItemStore = Depends(get_store),
):
    """
    Mark an Action Item handled (admin/manager only).
    """
    try:
        result = store.resolve(identity, item_id)
    except ActionHubError as e:
        raise to_http(e)
    return {
        "message": "Action Hub item resolved successfully",
        "status": result.status.value,
        "previousStatus": result.previous_status.value,
    }


@router.post("/{item_id}/tab")
def set_active_tab(
    item_id: str,
    request: TabRequest,
    identity: Identity = Depends(require(Operation.SET_TAB)),
    store: ActionItemStore = Depends(get_store),
):
    try:
        item = store.set_active_tab(identity, item_id, request.tab)
    except ActionHubError as e:
        raise to_http(e)
    return {
        "message": "Active tab updated successfully",
        "currentActiveTab": item.current_active_tab.value,
    }


# =============================================================================
# NOTES / GUESTS
# =============================================================================

@router.post("/{item_id}/notes", status_code=status.HTTP_201_CREATED)
def add_note(
    item_id: str,
    request: NoteRequest,
    identity: Identity = Depends(require(Operation.ADD_NOTE)),
    store: ActionItemStore = Depends(get_store),
):
    try:
        note = store.add_note(identity, item_id, request.content)
    except ActionHubError as e:
        raise to_http(e)
    return {"message": "Note added successfully", "note": serialize_note(note)}


@router.post("/{item_id}/guests", status_code=status.HTTP_201_CREATED)
def add_guests(
    item_id: str,
    request: GuestsRequest,
    identity: Identity = Depends(require(Operation.ADD_GUESTS)),
    store: ActionItemStore = Depends(get_store),
):
    try:
        guests = store.add_guests(identity, item_id, request.guests)
    except ActionHubError as e:
        raise to_http(e)
    return {
        "message": "Guests added successfully",
        "guests": [serialize_guest(g) for g in guests],
    }


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@router.post("/{item_id}/notify")
def notify_guests(
    item_id: str,
    request: NotifyGuestsRequest,
    identity: Identity = Depends(require(Operation.NOTIFY_GUESTS)),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    try:
        report = dispatcher.notify_guests(identity, item_id, request.message, request.guest_ids)
    except ActionHubError as e:
        raise to_http(e)
    response = report.to_dict()
    response.update({
        "message": "Notifications sent successfully" if report.failed == 0
        else f"Notifications sent: {report.summary}",
        "notifiedGuests": report.succeeded,
    })
    return response


@router.post("/{item_id}/notify-team")
def notify_team(
    item_id: str,
    request: NotifyTeamRequest,
    identity: Identity = Depends(require(Operation.NOTIFY_TEAM)),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Email the account's team members (premium accounts only).
    """
    try:
        report = dispatcher.notify_team(identity, item_id, request.message, request.managers_only)
    except ActionHubError as e:
        raise to_http(e)
    response = report.to_dict()
    response.update({
        "message": "Management notifications sent successfully" if request.managers_only
        else "Team notifications sent successfully",
        "notifiedTeamMembers": report.succeeded,
        "link": report.link,
    })
    return response
