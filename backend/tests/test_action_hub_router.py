"""
API tests for the auth and Action Hub routers (FastAPI TestClient).

The app shares the test database through a get_db override; mail goes to
a MagicMock transport.
"""
import pytest
from fastapi.testclient import TestClient

from disruption_hub.database import get_db
from disruption_hub.main import app
from disruption_hub.models.db_models import ActionItemDB, CollaboratorStatus, Role
from disruption_hub.routers.action_hub import get_mail_transport
from disruption_hub.services.auth import TokenAuthority


@pytest.fixture
def client(session_factory, mail_transport):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mail_transport] = lambda: mail_transport
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(db_session):
    def _headers(user, collaborator=None):
        token = TokenAuthority(db_session).issue(user, collaborator)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# =============================================================================
# TEST: AUTH
# =============================================================================

class TestAuthRoutes:

    def test_login_and_me(self, client, make_user):
        make_user(email="owner@example.com", password="secret-pass", is_premium=True)

        response = client.post("/auth/login", json={"email": "owner@example.com", "password": "secret-pass"})

        assert response.status_code == 200
        tokens = response.json()
        assert tokens["token_type"] == "bearer"
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert me.status_code == 200
        assert me.json()["email"] == "owner@example.com"
        assert me.json()["isPremium"] is True
        assert me.json()["isCollaborator"] is False

    def test_login_failure_is_uniform(self, client, make_user):
        make_user(email="owner@example.com", password="secret-pass")

        wrong_password = client.post("/auth/login", json={"email": "owner@example.com", "password": "nope"})
        unknown = client.post("/auth/login", json={"email": "ghost@example.com", "password": "nope"})

        assert wrong_password.status_code == 401
        assert unknown.status_code == 401
        assert wrong_password.json() == unknown.json()

    def test_logout_revokes_token(self, client, make_user, auth_headers):
        headers = auth_headers(make_user())

        assert client.post("/auth/logout", headers=headers).status_code == 200
        assert client.get("/auth/me", headers=headers).status_code == 401

    def test_refresh(self, client, make_user):
        make_user(email="owner@example.com", password="secret-pass")
        tokens = client.post("/auth/login", json={"email": "owner@example.com", "password": "secret-pass"}).json()

        refreshed = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        replayed = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert refreshed.status_code == 200
        assert replayed.status_code == 401

    def test_missing_token(self, client):
        response = client.get("/action-hub")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_restricted_collaborator_rejected_on_next_request(self, client, db_session, make_user,
                                                              make_collaborator, auth_headers):
        owner = make_user()
        collaborator = make_collaborator(owner, role=Role.MANAGER)
        headers = auth_headers(owner, collaborator)
        assert client.get("/action-hub", headers=headers).status_code == 200

        collaborator.status = CollaboratorStatus.RESTRICTED
        db_session.commit()

        assert client.get("/action-hub", headers=headers).status_code == 401


# =============================================================================
# TEST: ACTION HUB
# =============================================================================

class TestActionHubRoutes:

    def test_follow_counts_end_to_end(self, client, db_session, make_user, make_alert, auth_headers):
        alert = make_alert()
        user_a, user_b = make_user(), make_user()

        first = client.post(f"/action-hub/follow/{alert.id}", headers=auth_headers(user_a)).json()
        second = client.post(f"/action-hub/follow/{alert.id}", headers=auth_headers(user_b)).json()
        third = client.post(f"/action-hub/follow/{alert.id}", headers=auth_headers(user_a)).json()

        assert [first["numberOfFollows"], second["numberOfFollows"], third["numberOfFollows"]] == [1, 2, 1]
        assert third["removed"] is True
        assert third["actionHubId"] is None

        detail = client.get(f"/action-hub/{second['actionHubId']}", headers=auth_headers(user_b)).json()
        assert detail["followedBy"] == [user_b.id]
        assert detail["numberOfFollows"] == 1
        assert db_session.query(ActionItemDB).filter(ActionItemDB.user_id == user_a.id).count() == 0

    def test_flag_and_list(self, client, make_user, make_alert, auth_headers):
        user = make_user()
        alert = make_alert("Airport closure")
        headers = auth_headers(user)

        flagged = client.post(f"/action-hub/flag/{alert.id}", headers=headers).json()
        listing = client.get("/action-hub", headers=headers).json()

        assert flagged["isFlagged"] is True
        assert flagged["flagCount"] == 1
        assert len(listing) == 1
        assert listing[0]["actionHubId"] == flagged["actionHubId"]
        assert listing[0]["alert"] == alert.id
        assert listing[0]["alertId"] == alert.id
        assert listing[0]["title"] == "Airport closure"
        assert listing[0]["actionLogs"][0]["actionDetails"] == "Added alert to Action Hub"

    def test_detail_for_unfollowed_alert(self, client, make_user, make_alert, auth_headers):
        alert = make_alert()

        response = client.get(f"/action-hub/{alert.id}", headers=auth_headers(make_user()))

        assert response.status_code == 404
        assert response.json()["detail"]["alertExists"] is True

    def test_viewer_collaborator_cannot_resolve(self, client, make_user, make_collaborator, make_alert,
                                                auth_headers):
        owner = make_user(role=Role.ADMIN)
        viewer = make_collaborator(owner, role=Role.VIEWER)
        item_id = client.post(f"/action-hub/flag/{make_alert().id}",
                              headers=auth_headers(owner)).json()["actionHubId"]

        response = client.post(f"/action-hub/{item_id}/resolve", headers=auth_headers(owner, viewer))

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "role_insufficient"
        assert response.json()["detail"]["actual"] == "viewer"

    def test_manager_collaborator_resolves(self, client, make_user, make_collaborator, make_alert,
                                           auth_headers):
        owner = make_user()
        manager = make_collaborator(owner, role=Role.MANAGER, name="Marta")
        headers = auth_headers(owner, manager)
        item_id = client.post(f"/action-hub/flag/{make_alert().id}", headers=headers).json()["actionHubId"]

        response = client.post(f"/action-hub/{item_id}/resolve", headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "handled"
        logs = client.get(f"/action-hub/{item_id}/logs", headers=headers).json()
        assert logs[0]["actionType"] == "resolve"
        assert logs[0]["displayName"] == "Marta"
        assert logs[0]["isCollaborator"] is True

    def test_status_validation(self, client, make_user, make_alert, auth_headers):
        headers = auth_headers(make_user())
        item_id = client.post(f"/action-hub/flag/{make_alert().id}", headers=headers).json()["actionHubId"]

        bad = client.post(f"/action-hub/{item_id}/status", json={"status": "done"}, headers=headers)
        good = client.post(f"/action-hub/{item_id}/status", json={"status": "in_progress"}, headers=headers)

        assert bad.status_code == 400
        assert good.status_code == 200
        assert good.json()["previousStatus"] == "new"

    def test_other_account_item_forbidden(self, client, make_user, make_alert, auth_headers):
        item_id = client.post(f"/action-hub/flag/{make_alert().id}",
                              headers=auth_headers(make_user())).json()["actionHubId"]

        response = client.post(f"/action-hub/{item_id}/notes", json={"content": "Hi"},
                               headers=auth_headers(make_user()))

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "not_owner"

    def test_guests_and_notify(self, client, make_user, make_alert, auth_headers, mail_transport):
        headers = auth_headers(make_user())
        item_id = client.post(f"/action-hub/follow/{make_alert().id}", headers=headers).json()["actionHubId"]
        mail_transport.send.side_effect = lambda to_email, *args: to_email != "b@example.com"

        added = client.post(f"/action-hub/{item_id}/guests", headers=headers, json={
            "guests": [{"email": "a@example.com"}, {}, {"email": "b@example.com"}],
        })
        rejected = client.post(f"/action-hub/{item_id}/guests", headers=headers, json={"guests": [{}]})
        notified = client.post(f"/action-hub/{item_id}/notify", headers=headers,
                               json={"message": "Hotel shuttle suspended"})

        assert added.status_code == 201
        assert len(added.json()["guests"]) == 2
        assert rejected.status_code == 400
        assert notified.status_code == 200
        assert notified.json()["summary"] == "1 of 2 delivered"
        assert notified.json()["notifiedGuests"] == 1

    def test_notify_team_requires_premium(self, client, make_user, make_collaborator, make_alert,
                                          auth_headers):
        owner = make_user(is_premium=False)
        make_collaborator(owner, role=Role.MANAGER)
        headers = auth_headers(owner)
        item_id = client.post(f"/action-hub/flag/{make_alert().id}", headers=headers).json()["actionHubId"]

        response = client.post(f"/action-hub/{item_id}/notify-team", headers=headers,
                               json={"message": "Team, heads up"})

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "premium_required"

    def test_notify_team(self, client, make_user, make_collaborator, make_alert, auth_headers):
        owner = make_user(is_premium=True)
        make_collaborator(owner, role=Role.MANAGER)
        headers = auth_headers(owner)
        alert = make_alert()
        item_id = client.post(f"/action-hub/flag/{alert.id}", headers=headers).json()["actionHubId"]

        response = client.post(f"/action-hub/{item_id}/notify-team", headers=headers,
                               json={"message": "Managers, heads up", "managersOnly": True})

        assert response.status_code == 200
        assert response.json()["notifiedTeamMembers"] == 1
        assert response.json()["link"].endswith(f"/action-hub/alert/{alert.id}")

    def test_tab(self, client, make_user, make_alert, auth_headers):
        headers = auth_headers(make_user())
        item_id = client.post(f"/action-hub/flag/{make_alert().id}", headers=headers).json()["actionHubId"]

        response = client.post(f"/action-hub/{item_id}/tab", json={"tab": "add_notes"}, headers=headers)

        assert response.status_code == 200
        assert response.json()["currentActiveTab"] == "add_notes"

    def test_missing_or_mistyped_fields_are_bad_requests(self, client, make_user, make_alert, auth_headers):
        """Body problems surface as 400 with the service's message, never as 422."""
        headers = auth_headers(make_user())
        item_id = client.post(f"/action-hub/follow/{make_alert().id}", headers=headers).json()["actionHubId"]

        no_status = client.post(f"/action-hub/{item_id}/status", json={}, headers=headers)
        no_tab = client.post(f"/action-hub/{item_id}/tab", json={}, headers=headers)
        guests_not_list = client.post(f"/action-hub/{item_id}/guests", json={"guests": "x"}, headers=headers)
        note_not_text = client.post(f"/action-hub/{item_id}/notes", json={"content": 5}, headers=headers)
        no_message = client.post(f"/action-hub/{item_id}/notify", json={}, headers=headers)

        assert no_status.status_code == 400
        assert no_status.json()["detail"] == "Invalid status value"
        assert no_tab.status_code == 400
        assert no_tab.json()["detail"] == "Invalid tab name"
        assert guests_not_list.status_code == 400
        assert guests_not_list.json()["detail"] == "Guest list is required"
        assert note_not_text.status_code == 400
        assert note_not_text.json()["detail"] == "Note content is required"
        assert no_message.status_code == 400
        assert no_message.json()["detail"] == "Notification message is required"
