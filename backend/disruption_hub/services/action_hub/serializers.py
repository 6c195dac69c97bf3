"""
Public response shapes for Action Items.

alert_id is stored once; "alert" and "alertId" are both derived here for
clients that read either name.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from ...models.db_models import (
    ActionItemDB, AlertDB, GuestDB, NoteDB, ActionLogDB, CollaboratorDB, UserDB, ActorType,
)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _value(enum_or_str) -> Optional[str]:
    if enum_or_str is None:
        return None
    return getattr(enum_or_str, "value", enum_or_str)


def serialize_alert(alert: AlertDB) -> Dict[str, Any]:
    return {
        "_id": alert.id,
        "title": alert.title,
        "summary": alert.summary,
        "description": alert.description,
        "city": alert.city,
        "expectedStart": _iso(alert.expected_start),
        "expectedEnd": _iso(alert.expected_end),
        "numberOfFollows": alert.number_of_follows or 0,
        "followedBy": list(alert.followed_by or []),
        "flaggedBy": list(alert.flagged_by or []),
    }


def serialize_guest(guest: GuestDB) -> Dict[str, Any]:
    return {
        "_id": guest.id,
        "email": guest.email,
        "name": guest.name,
        "notificationSent": bool(guest.notification_sent),
        "sentTimestamp": _iso(guest.sent_timestamp),
    }


def serialize_note(note: NoteDB) -> Dict[str, Any]:
    return {
        "_id": note.id,
        "content": note.content,
        "createdBy": note.created_by,
        "authorEmail": note.author_email,
        "createdAt": _iso(note.created_at),
        "updatedAt": _iso(note.updated_at),
    }


def serialize_log(log: ActionLogDB) -> Dict[str, Any]:
    return {
        "_id": log.id,
        "actorType": _value(log.actor_type),
        "user": log.actor_id,
        "userEmail": log.actor_email,
        "actionType": _value(log.action_type),
        "actionDetails": log.details,
        "timestamp": _iso(log.timestamp),
    }


def serialize_team_member(collaborator: CollaboratorDB) -> Dict[str, Any]:
    return {
        "id": collaborator.id,
        "name": collaborator.name or collaborator.email,
        "email": collaborator.email,
        "role": _value(collaborator.role),
        "status": _value(collaborator.status),
    }


def serialize_item(
    item: ActionItemDB,
    detail: bool = False,
    team_members: Optional[List[CollaboratorDB]] = None,
) -> Dict[str, Any]:
    """
    Alert fields merged with the Action Item state.

    flagCount is this user's own flag (0/1); numberOfFollows is the alert total.
    """
    data = serialize_alert(item.alert) if item.alert is not None else {"_id": item.alert_id}
    data.update({
        "actionHubId": item.id,
        "userId": item.user_id,
        "alert": item.alert_id,
        "alertId": item.alert_id,
        "status": _value(item.status),
        "isFollowing": bool(item.is_following),
        "isFlagged": bool(item.flagged),
        "flagCount": 1 if item.flagged else 0,
        "numberOfFollows": (item.alert.number_of_follows or 0) if item.alert is not None else 0,
        "handledBy": item.handled_by,
        "handledAt": _iso(item.handled_at),
        "actionLogs": [serialize_log(log) for log in item.logs],
        "actionHubCreatedAt": _iso(item.created_at),
        "actionHubUpdatedAt": _iso(item.updated_at),
    })
    if detail:
        data.update({
            "currentActiveTab": _value(item.current_active_tab),
            "guests": [serialize_guest(g) for g in item.guests],
            "notes": [serialize_note(n) for n in item.notes],
            "teamMembers": [serialize_team_member(c) for c in (team_members or [])],
        })
    return data


def display_log(log: ActionLogDB, author: Optional[UserDB]) -> Dict[str, Any]:
    """Log entry with a human display name resolved from its author."""
    data = serialize_log(log)
    data["isCollaborator"] = False

    if log.actor_type == ActorType.SYSTEM:
        data["displayName"] = "System"
    elif author is None:
        data["displayName"] = "Unknown User"
    else:
        data["displayName"] = author.display_name
        if log.actor_email:
            collaborator = next(
                (c for c in author.collaborators if c.email.lower() == log.actor_email.lower()),
                None,
            )
            if collaborator is not None:
                data["displayName"] = collaborator.name or log.actor_email
                data["isCollaborator"] = True
                data["teamMemberInfo"] = {
                    "name": collaborator.name or log.actor_email,
                    "email": collaborator.email,
                    "role": _value(collaborator.role),
                }

    if log.timestamp:
        data["formattedTime"] = log.timestamp.strftime("%H:%M")
        data["formattedDate"] = log.timestamp.strftime("%b %d, %Y")
    return data
