"""
Audit Sink

Append-only record of state-changing operations. Entries are added to the
caller's session and commit with the mutation they describe.
"""
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ...models.db_models import AuditLogDB


class AuditSink:
    """Writes audit_log rows. Never updates or deletes."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        actor_id: Optional[str],
        action: str,
        target_type: str,
        target_id: Optional[str],
        detail: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        actor_email: Optional[str] = None,
    ) -> AuditLogDB:
        entry = AuditLogDB(
            actor_id=actor_id,
            actor_email=actor_email,
            action=action,
            target_type=target_type,
            target_id=target_id,
            detail=detail,
            event_metadata=metadata,
        )
        self.db.add(entry)
        return entry
