"""
Tests for the Action Item Store.

Covers:
1. Flag toggle (create, unflag, recount)
2. Follow toggle (create, delete when unflagged, keep when flagged, follow mirror)
3. Status changes and handled stamping
4. Notes, guests and the active tab
5. Reads (list, detail lookup, logs)
6. Rollback on storage failure and post-commit events
7. Interleaved writers (create race, flag landing before a delete)
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch
from uuid import uuid4

from sqlalchemy.exc import OperationalError

from disruption_hub.models.db_models import (
    ActionItemDB, ActionLogDB, AuditLogDB, GuestDB, NoteDB,
    ActiveTab, ActionType, ItemStatus, Role,
)
from disruption_hub.services.action_hub.errors import (
    AuthorizationFailure, DependencyFailure, InvalidInput, NotFound,
)
from disruption_hub.services.action_hub.events import ActionItemEventBus
from disruption_hub.services.action_hub.store import ActionItemStore


@pytest.fixture
def bus():
    return ActionItemEventBus()


@pytest.fixture
def store(db_session, bus):
    return ActionItemStore(db_session, bus=bus)


def _db_error():
    return OperationalError("INSERT", {}, Exception("database is locked"))


# =============================================================================
# TEST: FLAG
# =============================================================================

class TestToggleFlag:

    def test_first_flag_creates_item(self, db_session, store, make_user, make_alert, identity_for):
        """First flag creates one item, flagged, not following, with one log entry."""
        user = make_user()
        alert = make_alert()

        result = store.toggle_flag(identity_for(user), alert.id)

        assert result.created is True
        assert result.is_flagged is True
        assert result.flag_count == 1
        items = db_session.query(ActionItemDB).all()
        assert len(items) == 1
        assert items[0].flagged is True
        assert items[0].is_following is False
        assert items[0].status == ItemStatus.NEW
        assert [log.details for log in items[0].logs] == ["Added alert to Action Hub"]
        db_session.refresh(alert)
        assert alert.flagged_by == [user.id]

    def test_second_flag_unflags_and_recounts(self, db_session, store, make_user, make_alert, identity_for):
        user = make_user()
        alert = make_alert()
        identity = identity_for(user)

        store.toggle_flag(identity, alert.id)
        result = store.toggle_flag(identity, alert.id)

        assert result.created is False
        assert result.is_flagged is False
        assert result.flag_count == 0
        assert [log.details for log in result.item.logs] == [
            "Added alert to Action Hub", "Unflagged alert",
        ]
        db_session.refresh(alert)
        assert alert.flagged_by == []

    def test_flag_count_spans_accounts(self, store, make_user, make_alert, identity_for):
        alert = make_alert()
        store.toggle_flag(identity_for(make_user()), alert.id)

        result = store.toggle_flag(identity_for(make_user()), alert.id)

        assert result.flag_count == 2

    def test_unknown_alert(self, db_session, store, make_user, identity_for):
        with pytest.raises(NotFound) as exc:
            store.toggle_flag(identity_for(make_user()), "no-such-alert")

        assert exc.value.alert_exists is False
        assert db_session.query(ActionItemDB).count() == 0

    def test_storage_failure_rolls_back(self, db_session, store, make_user, make_alert, identity_for):
        """Item, log and audit entry are written together or not at all."""
        user = make_user()
        alert = make_alert()

        with patch.object(store.audit, "record", side_effect=_db_error()):
            with pytest.raises(DependencyFailure):
                store.toggle_flag(identity_for(user), alert.id)

        assert db_session.query(ActionItemDB).count() == 0
        assert db_session.query(ActionLogDB).count() == 0

    def test_collaborator_is_recorded_on_log(self, store, make_user, make_collaborator, make_alert,
                                             identity_for):
        user = make_user()
        collaborator = make_collaborator(user, role=Role.MANAGER)
        alert = make_alert()

        result = store.toggle_flag(identity_for(user, collaborator), alert.id)

        log = result.item.logs[0]
        assert log.actor_id == user.id
        assert log.actor_email == collaborator.email
        assert log.action_type == ActionType.FLAG


# =============================================================================
# TEST: FOLLOW
# =============================================================================

class TestToggleFollow:

    def test_first_follow_creates_following_item(self, db_session, store, make_user, make_alert,
                                                  identity_for):
        user = make_user()
        alert = make_alert()

        result = store.toggle_follow(identity_for(user), alert.id)

        assert result.created is True
        assert result.following is True
        assert result.number_of_follows == 1
        assert result.item.flagged is False
        db_session.refresh(user)
        assert user.followed_alerts == [alert.id]

    def test_unfollow_unflagged_deletes_item(self, db_session, store, make_user, make_alert, identity_for):
        user = make_user()
        alert = make_alert()
        identity = identity_for(user)
        created = store.toggle_follow(identity, alert.id)
        store.add_guests(identity, created.item.id, [{"email": "guest@example.com"}])
        item_id = created.item.id

        result = store.toggle_follow(identity, alert.id)

        assert result.deleted is True
        assert result.item is None
        assert result.following is False
        assert result.number_of_follows == 0
        assert db_session.query(ActionItemDB).filter(ActionItemDB.id == item_id).count() == 0
        assert db_session.query(ActionLogDB).filter(ActionLogDB.action_item_id == item_id).count() == 0
        assert db_session.query(GuestDB).filter(GuestDB.action_item_id == item_id).count() == 0
        db_session.refresh(user)
        assert user.followed_alerts == []

    def test_unfollow_flagged_keeps_item(self, db_session, store, make_user, make_alert, identity_for):
        user = make_user()
        alert = make_alert()
        identity = identity_for(user)
        store.toggle_flag(identity, alert.id)
        store.toggle_follow(identity, alert.id)

        result = store.toggle_follow(identity, alert.id)

        assert result.deleted is False
        assert result.item is not None
        assert result.item.flagged is True
        assert result.item.is_following is False
        assert db_session.query(ActionItemDB).count() == 1
        assert result.item.logs[-1].details == "Stopped following alert"

    def test_follow_counts_across_accounts(self, db_session, store, make_user, make_alert, identity_for):
        """A follows (0->1), B follows (1->2), A unfollows (2->1); only B remains."""
        alert = make_alert()
        user_a = make_user()
        user_b = make_user()

        assert alert.number_of_follows == 0
        assert store.toggle_follow(identity_for(user_a), alert.id).number_of_follows == 1
        assert store.toggle_follow(identity_for(user_b), alert.id).number_of_follows == 2
        result = store.toggle_follow(identity_for(user_a), alert.id)

        assert result.number_of_follows == 1
        assert result.deleted is True
        db_session.refresh(alert)
        assert alert.number_of_follows == 1
        assert alert.followed_by == [user_b.id]

    def test_refollow_after_unfollow_of_flagged_item(self, store, make_user, make_alert, identity_for):
        user = make_user()
        alert = make_alert()
        identity = identity_for(user)
        store.toggle_flag(identity, alert.id)
        store.toggle_follow(identity, alert.id)
        store.toggle_follow(identity, alert.id)

        result = store.toggle_follow(identity, alert.id)

        assert result.following is True
        assert result.created is False
        assert result.number_of_follows == 1


# =============================================================================
# TEST: CONCURRENT WRITERS
# =============================================================================

class TestConcurrentWriters:
    """Interleavings with a second session writing between our read and our write."""

    def test_create_race_retries_on_existing_row(self, db_session, session_factory, store, make_user,
                                                 make_alert, identity_for):
        """The pair is inserted by another writer after our lookup; the insert fails and the retry toggles."""
        user = make_user()
        alert = make_alert()
        lock_pair = store._lock_pair
        calls = []

        def racing_lock_pair(user_id, alert_id):
            calls.append(alert_id)
            if len(calls) > 1:
                return lock_pair(user_id, alert_id)
            other = session_factory()
            try:
                now = datetime.utcnow()
                other.add(ActionItemDB(
                    id=str(uuid4()),
                    user_id=user_id,
                    alert_id=alert_id,
                    status=ItemStatus.NEW,
                    flagged=False,
                    is_following=True,
                    current_active_tab=ActiveTab.NOTIFY_GUESTS,
                    created_at=now,
                    updated_at=now,
                ))
                other.commit()
            finally:
                other.close()
            return None

        with patch.object(store, "_lock_pair", side_effect=racing_lock_pair):
            result = store.toggle_flag(identity_for(user), alert.id)

        assert len(calls) == 2
        assert result.created is False
        assert result.is_flagged is True
        assert result.flag_count == 1
        items = db_session.query(ActionItemDB).filter(ActionItemDB.alert_id == alert.id).all()
        assert len(items) == 1
        assert items[0].id == result.item.id
        assert items[0].flagged is True
        assert items[0].is_following is True
        assert [log.details for log in items[0].logs] == ["Flagged alert"]

    def test_flag_landing_before_delete_keeps_item(self, db_session, session_factory, store, make_user,
                                                   make_alert, identity_for):
        """A flag committed after our read makes the conditional delete affect no row; nothing is deleted."""
        user = make_user()
        alert = make_alert()
        identity = identity_for(user)
        item_id = store.toggle_follow(identity, alert.id).item.id
        store.add_note(identity, item_id, "Check the shuttle schedule")
        log_count = db_session.query(ActionLogDB).filter(ActionLogDB.action_item_id == item_id).count()
        lock_pair = store._lock_pair

        def flag_after_read(user_id, alert_id):
            item = lock_pair(user_id, alert_id)
            other = session_factory()
            try:
                other.query(ActionItemDB).filter(ActionItemDB.id == item_id).update(
                    {ActionItemDB.flagged: True}, synchronize_session=False
                )
                other.commit()
            finally:
                other.close()
            return item

        with patch.object(store, "_lock_pair", side_effect=flag_after_read):
            with pytest.raises(DependencyFailure, match="affected 0 rows"):
                store.toggle_follow(identity, alert.id)

        db_session.expire_all()
        item = db_session.query(ActionItemDB).filter(ActionItemDB.id == item_id).one()
        assert item.flagged is True
        assert item.is_following is True
        assert len(item.notes) == 1
        assert db_session.query(ActionLogDB).filter(ActionLogDB.action_item_id == item_id).count() == log_count
        assert db_session.query(AuditLogDB).filter(AuditLogDB.action == "action_item.delete").count() == 0

    def test_unrelated_failure_is_not_retried(self, store, make_user, make_alert, identity_for):
        with patch.object(store, "_lock_pair", side_effect=_db_error()) as lock_pair:
            with pytest.raises(DependencyFailure):
                store.toggle_flag(identity_for(make_user()), make_alert().id)

        assert lock_pair.call_count == 1


# =============================================================================
# TEST: STATUS
# =============================================================================

class TestStatus:

    @pytest.fixture
    def item(self, store, make_user, make_alert, identity_for):
        user = make_user()
        return store.toggle_flag(identity_for(user), make_alert().id).item

    def test_handled_stamps_handler(self, store, item, identity_for, db_session):
        owner = item.owner

        result = store.set_status(identity_for(owner), item.id, "handled")

        assert result.previous_status == ItemStatus.NEW
        assert result.item.status == ItemStatus.HANDLED
        assert result.item.handled_by == owner.id
        assert result.item.handled_at is not None
        log = result.item.logs[-1]
        assert log.action_type == ActionType.MARK_HANDLED
        assert log.details == "Marked alert as handled"

    @pytest.mark.parametrize("target", ["new", "in_progress"])
    def test_other_statuses_do_not_stamp(self, store, item, identity_for, target):
        result = store.set_status(identity_for(item.owner), item.id, target)

        assert result.item.status == ItemStatus(target)
        assert result.item.handled_by is None
        assert result.item.handled_at is None
        assert result.item.logs[-1].action_type == ActionType.EDIT

    def test_invalid_status(self, store, item, identity_for):
        with pytest.raises(InvalidInput, match="Invalid status value"):
            store.set_status(identity_for(item.owner), item.id, "archived")

    def test_refused_transition_changes_nothing(self, db_session, store, item, identity_for):
        log_count = len(item.logs)

        with patch("disruption_hub.services.action_hub.store.can_transition", return_value=False):
            with pytest.raises(InvalidInput, match="Cannot move from new to handled"):
                store.set_status(identity_for(item.owner), item.id, "handled")

        db_session.refresh(item)
        assert item.status == ItemStatus.NEW
        assert item.handled_by is None
        assert len(item.logs) == log_count

    def test_non_owner_is_denied_without_change(self, db_session, store, item, make_user, identity_for):
        stranger = make_user()
        log_count = len(item.logs)

        with pytest.raises(AuthorizationFailure):
            store.set_status(identity_for(stranger), item.id, "handled")

        db_session.refresh(item)
        assert item.status == ItemStatus.NEW
        assert len(item.logs) == log_count

    def test_admin_may_change_any_item(self, store, item, make_user, identity_for):
        admin = make_user(role=Role.ADMIN)

        result = store.set_status(identity_for(admin), item.id, "in_progress")

        assert result.item.status == ItemStatus.IN_PROGRESS
        assert result.item.logs[-1].actor_id == admin.id

    def test_resolve_logs_resolution(self, store, item, make_user, identity_for):
        admin = make_user(role=Role.ADMIN)

        result = store.resolve(identity_for(admin), item.id)

        assert result.item.status == ItemStatus.HANDLED
        assert result.item.handled_by == admin.id
        assert result.item.logs[-1].action_type == ActionType.RESOLVE
        assert result.item.logs[-1].details == "Resolved alert"

    def test_unknown_item(self, store, make_user, identity_for):
        with pytest.raises(NotFound):
            store.set_status(identity_for(make_user()), "missing", "handled")

    def test_status_change_is_audited(self, db_session, store, item, identity_for):
        store.set_status(identity_for(item.owner), item.id, "in_progress")

        entry = db_session.query(AuditLogDB).filter(AuditLogDB.action == "action_item.status").one()
        assert entry.target_id == item.id
        assert entry.event_metadata == {"previous_status": "new", "new_status": "in_progress"}


# =============================================================================
# TEST: NOTES / GUESTS / TAB
# =============================================================================

class TestNotesGuestsTab:

    @pytest.fixture
    def owner(self, make_user):
        return make_user()

    @pytest.fixture
    def item(self, store, owner, make_alert, identity_for):
        return store.toggle_follow(identity_for(owner), make_alert().id).item

    def test_add_note(self, db_session, store, owner, make_collaborator, item, identity_for):
        collaborator = make_collaborator(owner, role=Role.VIEWER)

        note = store.add_note(identity_for(owner, collaborator), item.id, "Called the concierge")

        assert note.content == "Called the concierge"
        assert note.created_by == owner.id
        assert note.author_email == collaborator.email
        db_session.refresh(item)
        assert item.logs[-1].action_type == ActionType.NOTE_ADDED
        assert item.logs[-1].details == "Added a new note"

    @pytest.mark.parametrize("content", [None, "", "   "])
    def test_empty_note_rejected(self, db_session, store, owner, item, identity_for, content):
        with pytest.raises(InvalidInput, match="Note content is required"):
            store.add_note(identity_for(owner), item.id, content)

        assert db_session.query(NoteDB).count() == 0

    def test_malformed_guests_are_skipped(self, db_session, store, owner, item, identity_for):
        guests = store.add_guests(identity_for(owner), item.id, [
            {"email": "a@example.com"}, {}, {"email": "b@example.com", "name": "Bea"},
        ])

        assert [g.email for g in guests] == ["a@example.com", "b@example.com"]
        assert all(g.notification_sent is False for g in guests)
        db_session.refresh(item)
        assert len(item.guests) == 2
        assert item.logs[-1].details == "Added 2 guests for notification"

    def test_all_invalid_guests_rejected_without_mutation(self, db_session, store, owner, item,
                                                          identity_for):
        db_session.refresh(item)
        updated_at = item.updated_at
        log_count = len(item.logs)

        with pytest.raises(InvalidInput, match="No valid guests provided"):
            store.add_guests(identity_for(owner), item.id, [{}, {"name": "No Email"}, "junk", {"email": ""}])

        db_session.refresh(item)
        assert item.guests == []
        assert len(item.logs) == log_count
        assert item.updated_at == updated_at

    def test_empty_guest_list_rejected(self, store, owner, item, identity_for):
        with pytest.raises(InvalidInput, match="Guest list is required"):
            store.add_guests(identity_for(owner), item.id, [])

    def test_guests_must_be_a_list(self, db_session, store, owner, item, identity_for):
        with pytest.raises(InvalidInput, match="Guest list is required"):
            store.add_guests(identity_for(owner), item.id, "guest@example.com")

        assert db_session.query(GuestDB).count() == 0

    def test_set_active_tab_is_not_logged(self, db_session, store, owner, item, identity_for):
        log_count = len(item.logs)

        result = store.set_active_tab(identity_for(owner), item.id, "add_notes")

        assert result.current_active_tab == ActiveTab.ADD_NOTES
        assert len(result.logs) == log_count

    def test_invalid_tab(self, store, owner, item, identity_for):
        with pytest.raises(InvalidInput, match="Invalid tab name"):
            store.set_active_tab(identity_for(owner), item.id, "history")


# =============================================================================
# TEST: READS
# =============================================================================

class TestReads:

    def test_list_is_scoped_and_ordered(self, db_session, store, make_user, make_alert, identity_for):
        owner = make_user()
        other = make_user()
        first = store.toggle_flag(identity_for(owner), make_alert("First").id).item
        second = store.toggle_flag(identity_for(owner), make_alert("Second").id).item
        store.toggle_flag(identity_for(other), make_alert("Other").id)
        first.updated_at = datetime.utcnow() + timedelta(minutes=5)
        db_session.commit()

        items = store.list_for_user(identity_for(owner))

        assert [i.id for i in items] == [first.id, second.id]

    def test_escalated_item_moves_to_front(self, db_session, store, make_user, make_alert, identity_for):
        owner = make_user()
        stale = store.toggle_flag(identity_for(owner), make_alert("Stale").id).item
        recent = store.toggle_flag(identity_for(owner), make_alert("Recent").id).item
        stale.created_at = datetime.utcnow() - timedelta(hours=25)
        stale.updated_at = datetime.utcnow() - timedelta(hours=25)
        recent.updated_at = datetime.utcnow() - timedelta(hours=1)
        db_session.commit()

        items = store.list_for_user(identity_for(owner))

        assert [i.id for i in items] == [stale.id, recent.id]
        assert items[0].status == ItemStatus.IN_PROGRESS

    def test_detail_by_alert_id(self, store, make_user, make_collaborator, make_alert, identity_for):
        owner = make_user()
        make_collaborator(owner, name="Front desk")
        alert = make_alert()
        created = store.toggle_follow(identity_for(owner), alert.id).item

        item, team = store.get_for_identity(identity_for(owner), alert.id)

        assert item.id == created.id
        assert [c.name for c in team] == ["Front desk"]

    def test_detail_not_found_reports_alert_existence(self, store, make_user, make_alert, identity_for):
        alert = make_alert()
        identity = identity_for(make_user())

        with pytest.raises(NotFound) as exc:
            store.get_for_identity(identity, alert.id)
        assert exc.value.alert_exists is True

        with pytest.raises(NotFound) as exc:
            store.get_for_identity(identity, "nothing-here")
        assert exc.value.alert_exists is False

    def test_detail_denied_to_other_account(self, store, make_user, make_alert, identity_for):
        item = store.toggle_follow(identity_for(make_user()), make_alert().id).item

        with pytest.raises(AuthorizationFailure):
            store.get_for_identity(identity_for(make_user()), item.id)

    def test_logs_newest_first_with_authors(self, store, make_user, make_alert, identity_for):
        owner = make_user(first_name="Ines", last_name="Costa")
        identity = identity_for(owner)
        item = store.toggle_flag(identity, make_alert().id).item
        store.add_note(identity, item.id, "First note")

        entries = store.get_logs(identity, item.id)

        assert [log.details for log, _ in entries] == ["Added a new note", "Added alert to Action Hub"]
        assert all(author.id == owner.id for _, author in entries)


# =============================================================================
# TEST: EVENTS
# =============================================================================

class TestEvents:

    def test_events_published_after_commit(self, store, bus, make_user, make_alert, identity_for):
        received = []
        bus.subscribe(received.append)
        user = make_user()
        alert = make_alert()

        result = store.toggle_flag(identity_for(user), alert.id)
        store.set_status(identity_for(user), result.item.id, "handled")

        assert [e.kind for e in received] == ["flag", "status"]
        assert received[0].action_item_id == result.item.id
        assert received[0].payload == {"flagged": True, "flag_count": 1}
        assert received[1].payload["status"] == "handled"

    def test_failing_subscriber_does_not_undo_mutation(self, db_session, store, bus, make_user,
                                                       make_alert, identity_for):
        bus.subscribe(MagicMock(side_effect=RuntimeError("push service down")))

        result = store.toggle_flag(identity_for(make_user()), make_alert().id)

        assert result.is_flagged is True
        assert db_session.query(ActionItemDB).count() == 1

    def test_no_event_on_failure(self, store, bus, make_user, make_alert, identity_for):
        received = []
        bus.subscribe(received.append)

        with pytest.raises(InvalidInput):
            store.set_status(identity_for(make_user()), "whatever", "bogus")

        assert received == []
