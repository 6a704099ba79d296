from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from eventflow import api
from eventflow.models import Event, Penalty, PenaltyType, User
from eventflow.notifications import NotificationKind
from eventflow.utils import utcnow


@pytest.fixture()
def client(monkeypatch):
    """FastAPI test client with the scheduler and migrations disabled."""

    monkeypatch.setattr(api, "start_scheduler", lambda: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    monkeypatch.setattr(api, "init_db", lambda: None)
    with TestClient(api.app) as test_client:
        yield test_client


def _auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {user.api_token}"}


def _iso(days: int) -> str:
    return (utcnow().replace(microsecond=0) + timedelta(days=days)).isoformat()


def _create_event(client, user: User, **overrides) -> dict:
    payload = {"title": "Launch Party", "date": _iso(3)}
    payload.update(overrides)
    response = client.post("/api/v1/events", json=payload, headers=_auth(user))
    assert response.status_code == 201, response.text
    return response.json()["event"]


def _report(client, user: User, event_id: str, reason: str = "SPAM"):
    return client.post(
        "/api/v1/moderation/reports",
        json={"event_id": event_id, "reason": reason},
        headers=_auth(user),
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_or_unknown_token_is_unauthorized(client):
    assert client.get("/api/v1/me").status_code == 401
    response = client.get(
        "/api/v1/me", headers={"Authorization": "Bearer not-a-real-token"}
    )
    assert response.status_code == 401
    assert response.json() == {"detail": "Missing or invalid API token"}


def test_me_returns_profile(client, make_user):
    user = make_user(name="alice")
    response = client.get("/api/v1/me", headers=_auth(user))
    assert response.status_code == 200
    body = response.json()["user"]
    assert body["email"] == "alice@example.com"
    assert body["is_banned"] is False


def test_create_event_sets_availability_from_date(client, make_user):
    user = make_user()
    upcoming = _create_event(client, user)
    assert upcoming["availability"] == "PUBLISHED"
    assert upcoming["revision"] == 1
    past = _create_event(client, user, date=_iso(-3))
    assert past["availability"] == "COMPLETED"


def test_create_event_cannot_start_cancelled(client, make_user):
    response = client.post(
        "/api/v1/events",
        json={"title": "Nope", "date": _iso(2), "availability": "CANCELLED"},
        headers=_auth(make_user()),
    )
    assert response.status_code == 422
    assert response.json()["error"] == "INVALID_AVAILABILITY"


def test_publishing_past_event_returns_error_body(client, make_user):
    user = make_user()
    event = _create_event(client, user, date=_iso(-1))
    response = client.patch(
        f"/api/v1/events/{event['id']}",
        json={"availability": "PUBLISHED", "title": "Again"},
        headers=_auth(user),
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "PUBLISH_REQUIRES_FUTURE_DATE"
    assert body["message"]

    fetched = client.get(f"/api/v1/events/{event['id']}", headers=_auth(user))
    assert fetched.json()["event"]["title"] == "Launch Party"


def test_update_with_stale_revision_conflicts(client, make_user):
    user = make_user()
    event = _create_event(client, user)
    first = client.patch(
        f"/api/v1/events/{event['id']}",
        json={"title": "Renamed", "revision": 1},
        headers=_auth(user),
    )
    assert first.status_code == 200
    assert first.json()["event"]["revision"] == 2

    stale = client.patch(
        f"/api/v1/events/{event['id']}",
        json={"title": "Again", "revision": 1},
        headers=_auth(user),
    )
    assert stale.status_code == 409
    assert stale.json()["error"] == "REVISION_MISMATCH"


def test_non_owner_cannot_update(client, make_user):
    owner, other = make_user(), make_user()
    event = _create_event(client, owner)
    response = client.patch(
        f"/api/v1/events/{event['id']}", json={"title": "Mine"}, headers=_auth(other)
    )
    assert response.status_code == 403
    assert response.json()["error"] == "NOT_OWNER"


def test_private_event_is_not_found_for_strangers(client, make_user):
    owner, stranger = make_user(), make_user()
    event = _create_event(client, owner, visibility="PRIVATE")
    assert client.get(f"/api/v1/events/{event['id']}").status_code == 404
    response = client.get(f"/api/v1/events/{event['id']}", headers=_auth(stranger))
    assert response.status_code == 404
    assert response.json()["error"] == "EVENT_NOT_FOUND"
    owned = client.get(f"/api/v1/events/{event['id']}", headers=_auth(owner))
    assert owned.status_code == 200
    assert owned.json()["event"]["guests"] == []


def test_capacity_enforced_on_rsvp(client, make_user, delivered):
    owner, first, second = make_user(), make_user(), make_user()
    event = _create_event(client, owner, capacity=1)
    invited = client.post(
        f"/api/v1/events/{event['id']}/guests",
        json={"emails": [first.email, second.email]},
        headers=_auth(owner),
    )
    assert invited.status_code == 201
    guests = {guest["email"]: guest for guest in invited.json()["guests"]}
    assert [n.kind for n in delivered] == [NotificationKind.EVENT_INVITE] * 2

    accepted = client.patch(
        f"/api/v1/events/{event['id']}/guests/{guests[first.email]['id']}",
        json={"status": "YES"},
        headers=_auth(first),
    )
    assert accepted.status_code == 200
    assert accepted.json()["guest"]["status"] == "YES"

    refused = client.patch(
        f"/api/v1/events/{event['id']}/guests/{guests[second.email]['id']}",
        json={"status": "YES"},
        headers=_auth(second),
    )
    assert refused.status_code == 409
    assert refused.json()["error"] == "EVENT_FULL"

    shrink = client.patch(
        f"/api/v1/events/{event['id']}", json={"capacity": 0}, headers=_auth(owner)
    )
    assert shrink.status_code == 422
    assert shrink.json()["error"] == "INVALID_CAPACITY"


def test_reports_hide_event_from_public(client, make_user):
    owner = make_user()
    reporters = [make_user() for _ in range(3)]
    event = _create_event(client, owner)

    flags = []
    for reporter in reporters:
        response = _report(client, reporter, event["id"])
        assert response.status_code == 201
        flags.append(response.json()["auto_hidden"])
    assert flags == [False, False, True]

    duplicate = _report(client, reporters[0], event["id"], reason="FRAUD")
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "DUPLICATE_REPORT"

    own = _report(client, owner, event["id"])
    assert own.status_code == 403
    assert own.json()["error"] == "SELF_REPORT"

    assert client.get(f"/api/v1/events/{event['id']}").status_code == 404
    listing = client.get("/api/v1/events").json()
    assert listing["events"] == []
    mine = client.get("/api/v1/moderation/reports/my", headers=_auth(reporters[0]))
    assert len(mine.json()["reports"]) == 1


def test_report_reason_must_be_known(client, make_user):
    owner, reporter = make_user(), make_user()
    event = _create_event(client, owner)
    response = _report(client, reporter, event["id"], reason="BORING")
    assert response.status_code == 422
    assert "detail" in response.json()


def test_admin_routes_require_admin(client, make_user):
    user = make_user()
    for path in (
        "/api/v1/moderation/stats",
        "/api/v1/moderation/reports/pending",
        "/api/v1/moderation/banned-users",
    ):
        response = client.get(path, headers=_auth(user))
        assert response.status_code == 403
        assert response.json()["error"] == "ADMIN_REQUIRED"


def test_review_rejection_restores_event(client, admin, make_user):
    owner = make_user()
    event = _create_event(client, owner)
    report_ids = [
        _report(client, make_user(), event["id"]).json()["report"]["id"]
        for _ in range(3)
    ]

    pending = client.get("/api/v1/moderation/reports/pending", headers=_auth(admin))
    assert len(pending.json()["reports"]) == 3

    reviewed = client.patch(
        f"/api/v1/moderation/reports/{report_ids[0]}/review",
        json={"status": "REJECTED", "review_notes": "Not spam"},
        headers=_auth(admin),
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["report"]["status"] == "REJECTED"

    again = client.patch(
        f"/api/v1/moderation/reports/{report_ids[0]}/review",
        json={"status": "ACCEPTED"},
        headers=_auth(admin),
    )
    assert again.status_code == 409
    assert again.json()["error"] == "ALREADY_REVIEWED"

    fetched = client.get(f"/api/v1/events/{event['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["event"]["is_hidden"] is False


def test_ban_blocks_user_and_unban_restores_access(client, session, admin, make_user):
    target = make_user()
    event = _create_event(client, target)

    banned = client.post(
        "/api/v1/moderation/penalties",
        json={"user_id": target.id, "type": "BAN", "reason": "Scams"},
        headers=_auth(admin),
    )
    assert banned.status_code == 201
    assert banned.json()["penalty"]["expires_at"] is None

    blocked = client.post(
        "/api/v1/events", json={"title": "x", "date": _iso(1)}, headers=_auth(target)
    )
    assert blocked.status_code == 403
    body = blocked.json()
    assert body["error"] == "USER_BANNED"
    assert body["message"] == "Account permanently banned. Reason: Scams"

    listed = client.get("/api/v1/moderation/banned-users", headers=_auth(admin))
    assert [user["id"] for user in listed.json()["users"]] == [target.id]

    restored = client.post(f"/api/v1/moderation/unban/{target.id}", headers=_auth(admin))
    assert restored.status_code == 200
    assert restored.json()["user"]["is_banned"] is False
    assert client.get("/api/v1/me", headers=_auth(target)).status_code == 200

    session.expire_all()
    assert session.get(Event, event["id"]).is_hidden is True
    penalties = session.query(Penalty).filter(Penalty.user_id == target.id).all()
    assert [penalty.is_active for penalty in penalties] == [False]


def test_penalty_validation(client, admin, make_user):
    target = make_user()
    other_admin = make_user(name="second-admin", role=admin.role)

    missing_duration = client.post(
        "/api/v1/moderation/penalties",
        json={"user_id": target.id, "type": "SUSPENSION", "reason": "Spam"},
        headers=_auth(admin),
    )
    assert missing_duration.status_code == 422
    assert missing_duration.json()["error"] == "DURATION_REQUIRED"

    out_of_range = client.post(
        "/api/v1/moderation/penalties",
        json={"user_id": target.id, "type": "SUSPENSION", "reason": "Spam", "duration": 400},
        headers=_auth(admin),
    )
    assert out_of_range.status_code == 422

    immune = client.post(
        "/api/v1/moderation/penalties",
        json={"user_id": other_admin.id, "type": "WARNING", "reason": "Hmm"},
        headers=_auth(admin),
    )
    assert immune.status_code == 403
    assert immune.json()["error"] == "CANNOT_PENALIZE_ADMIN"

    not_banned = client.post(f"/api/v1/moderation/unban/{target.id}", headers=_auth(admin))
    assert not_banned.status_code == 409
    assert not_banned.json()["error"] == "NOT_BANNED"


def test_expired_suspension_lifted_on_request(client, session, make_user):
    user = make_user()
    user.is_banned = True
    user.banned_at = utcnow() - timedelta(days=8)
    user.banned_until = utcnow() - timedelta(days=1)
    user.ban_reason = "Cool off"
    session.commit()

    response = client.get("/api/v1/me", headers=_auth(user))
    assert response.status_code == 200
    assert response.json()["user"]["is_banned"] is False
    assert response.json()["user"]["banned_until"] is None


def test_active_suspension_is_forbidden(client, session, make_user):
    user = make_user()
    user.is_banned = True
    user.banned_until = utcnow() + timedelta(days=1)
    user.ban_reason = "Cool off"
    session.commit()

    response = client.get("/api/v1/me", headers=_auth(user))
    assert response.status_code == 403
    assert response.json()["message"].startswith("Account suspended until")


def test_hide_unhide_and_stats(client, admin, make_user):
    owner = make_user()
    event = _create_event(client, owner)

    hidden = client.post(
        f"/api/v1/moderation/events/{event['id']}/hide",
        json={"reason": "Checking"},
        headers=_auth(admin),
    )
    assert hidden.status_code == 200
    assert hidden.json()["event"]["hidden_by"] == "MANUAL"

    stats = client.get("/api/v1/moderation/stats", headers=_auth(admin)).json()["stats"]
    assert stats["hidden_events"] == 1
    assert stats["pending_reports"] == 0

    shown = client.post(
        f"/api/v1/moderation/events/{event['id']}/unhide", headers=_auth(admin)
    )
    assert shown.json()["event"]["is_hidden"] is False


def test_guest_list_is_owner_only(client, make_user):
    owner, stranger = make_user(), make_user()
    event = _create_event(client, owner)
    client.post(
        f"/api/v1/events/{event['id']}/guests",
        json={"emails": ["friend@example.com"]},
        headers=_auth(owner),
    )

    denied = client.get(f"/api/v1/events/{event['id']}/guests", headers=_auth(stranger))
    assert denied.status_code == 403
    assert denied.json()["error"] == "NOT_OWNER"

    listed = client.get(f"/api/v1/events/{event['id']}/guests", headers=_auth(owner))
    assert [guest["email"] for guest in listed.json()["guests"]] == ["friend@example.com"]
