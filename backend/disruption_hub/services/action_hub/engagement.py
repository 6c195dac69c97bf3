"""
Engagement Aggregator

Alert-level follow/flag totals are derived data. They are always recomputed
from action_items with a full count, never incremented, so concurrent toggles
on the same alert converge on the true value.

Methods stage writes on the session; the caller commits.
"""
from typing import List, Tuple

from sqlalchemy.orm import Session

from ...models.db_models import ActionItemDB, UserDB
from ..directories import AlertDirectory


class EngagementAggregator:

    def __init__(self, db: Session):
        self.db = db
        self.alerts = AlertDirectory(db)

    def _distinct_users(self, alert_id: str, *criteria) -> List[str]:
        rows = self.db.query(ActionItemDB.user_id).filter(
            ActionItemDB.alert_id == alert_id, *criteria
        ).distinct().order_by(ActionItemDB.user_id).all()
        return [row[0] for row in rows]

    def flagged_by(self, alert_id: str) -> List[str]:
        return self._distinct_users(alert_id, ActionItemDB.flagged.is_(True))

    def followed_by(self, alert_id: str) -> List[str]:
        return self._distinct_users(alert_id, ActionItemDB.is_following.is_(True))

    def recount_flags(self, alert_id: str) -> int:
        """Recompute alerts.flagged_by. Returns the flag count."""
        users = self.flagged_by(alert_id)
        self.alerts.update_follow_flag_aggregates(alert_id, flagged_by=users)
        return len(users)

    def recount_follows(self, alert_id: str) -> Tuple[int, List[str]]:
        """Recompute alerts.number_of_follows and alerts.followed_by."""
        users = self.followed_by(alert_id)
        self.alerts.update_follow_flag_aggregates(
            alert_id, number_of_follows=len(users), followed_by=users
        )
        return len(users), users

    def mirror_follow(self, user_id: str, alert_id: str, following: bool) -> None:
        """Idempotently add/remove alert_id on the user's followed_alerts."""
        user = self.db.query(UserDB).filter(UserDB.id == user_id).with_for_update().first()
        if user is None:
            return
        current = list(user.followed_alerts or [])
        if following and alert_id not in current:
            user.followed_alerts = current + [alert_id]
        elif not following and alert_id in current:
            user.followed_alerts = [a for a in current if a != alert_id]
