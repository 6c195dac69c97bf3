"""
Account and Alert directories.

Thin lookups over the ORM. Storage errors surface as DependencyFailure so
callers can tell "not there" (None) from "could not look" (exception).
"""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.db_models import UserDB, CollaboratorDB, AlertDB
from .action_hub.errors import DependencyFailure

logger = logging.getLogger(__name__)


class AccountDirectory:
    """Primary accounts and their embedded collaborators."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, user_id: str) -> Optional[UserDB]:
        try:
            return self.db.query(UserDB).filter(UserDB.id == user_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Account lookup failed for {user_id}: {e}")
            raise DependencyFailure("Account directory unavailable") from e

    def find_by_email(self, email: str) -> Optional[UserDB]:
        try:
            return self.db.query(UserDB).filter(
                func.lower(UserDB.email) == email.lower()
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Account lookup failed for {email}: {e}")
            raise DependencyFailure("Account directory unavailable") from e

    def find_collaborator(self, user_id: str, email: str) -> Optional[CollaboratorDB]:
        """Collaborator with this email under the given primary account."""
        try:
            return self.db.query(CollaboratorDB).filter(
                CollaboratorDB.user_id == user_id,
                func.lower(CollaboratorDB.email) == email.lower(),
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Collaborator lookup failed for {email}: {e}")
            raise DependencyFailure("Account directory unavailable") from e

    def find_by_collaborator_email(self, email: str) -> List[CollaboratorDB]:
        """All collaborator entries (across accounts) registered with this email."""
        try:
            return self.db.query(CollaboratorDB).filter(
                func.lower(CollaboratorDB.email) == email.lower()
            ).order_by(CollaboratorDB.created_at).all()
        except SQLAlchemyError as e:
            logger.error(f"Collaborator lookup failed for {email}: {e}")
            raise DependencyFailure("Account directory unavailable") from e

    def save(self, account: UserDB) -> UserDB:
        try:
            self.db.add(account)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save account {account.id}: {e}")
            raise DependencyFailure("Account directory unavailable") from e
        return account


class AlertDirectory:
    """Read access to alerts plus the derived engagement fields."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, alert_id: str) -> Optional[AlertDB]:
        try:
            return self.db.query(AlertDB).filter(AlertDB.id == alert_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Alert lookup failed for {alert_id}: {e}")
            raise DependencyFailure("Alert directory unavailable") from e

    def update_follow_flag_aggregates(
        self,
        alert_id: str,
        number_of_follows: Optional[int] = None,
        followed_by: Optional[List[str]] = None,
        flagged_by: Optional[List[str]] = None,
    ) -> None:
        """Overwrite derived engagement fields. Caller owns the commit."""
        values = {}
        if number_of_follows is not None:
            values[AlertDB.number_of_follows] = number_of_follows
        if followed_by is not None:
            values[AlertDB.followed_by] = followed_by
        if flagged_by is not None:
            values[AlertDB.flagged_by] = flagged_by
        if not values:
            return
        try:
            self.db.query(AlertDB).filter(AlertDB.id == alert_id).update(
                values, synchronize_session="fetch"
            )
        except SQLAlchemyError as e:
            logger.error(f"Aggregate update failed for alert {alert_id}: {e}")
            raise DependencyFailure("Alert directory unavailable") from e
