"""Tests for the /sessions and /rate-limit routers."""

from app.models.chat_message import ChatMessage


def test_list_sessions(client, auth_headers, setup_session, setup_other_user_session):
    """GET /sessions returns only the caller's sessions."""
    r = client.get("/sessions", headers=auth_headers)
    assert r.status_code == 200
    data = r.json()
    assert [s["session_id"] for s in data["items"]] == [setup_session.session_id]
    assert data["has_more"] is False
    assert data["next_cursor"] is None


def test_list_sessions_without_token_is_empty(client, setup_session):
    r = client.get("/sessions")
    assert r.status_code == 200
    assert r.json()["items"] == []


def test_list_sessions_invalid_cursor(client, auth_headers, setup_session):
    r = client.get("/sessions", params={"cursor": "%%%"}, headers=auth_headers)
    assert r.status_code == 400


def test_get_session(client, auth_headers, setup_session):
    r = client.get(f"/sessions/{setup_session.session_id}", headers=auth_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["title"] == setup_session.title
    assert data["owner_id"] == setup_session.owner_id


def test_get_session_of_other_user_is_404(client, auth_headers, setup_other_user_session):
    r = client.get(f"/sessions/{setup_other_user_session.session_id}", headers=auth_headers)
    assert r.status_code == 404


def test_list_messages_paginated(client, auth_headers, setup_session_with_messages):
    session, messages = setup_session_with_messages
    r = client.get(
        f"/sessions/{session.session_id}/messages",
        params={"limit": 4},
        headers=auth_headers,
    )
    assert r.status_code == 200
    first = r.json()
    assert first["has_more"] is True

    r = client.get(
        f"/sessions/{session.session_id}/messages",
        params={"limit": 4, "cursor": first["next_cursor"]},
        headers=auth_headers,
    )
    second = r.json()
    assert second["has_more"] is False
    ids = [m["message_id"] for m in first["items"] + second["items"]]
    assert ids == [m.message_id for m in messages]


def test_rename_session(client, auth_headers, setup_session):
    r = client.patch(
        f"/sessions/{setup_session.session_id}",
        json={"title": "Renamed"},
        headers=auth_headers,
    )
    assert r.status_code == 200
    assert r.json()["title"] == "Renamed"


def test_rename_requires_token(client, setup_session):
    r = client.patch(f"/sessions/{setup_session.session_id}", json={"title": "x"})
    assert r.status_code == 401


def test_delete_session(client, db, auth_headers, setup_session_with_messages):
    """DELETE removes the session and its messages."""
    session, _ = setup_session_with_messages
    r = client.delete(f"/sessions/{session.session_id}", headers=auth_headers)
    assert r.status_code == 204

    r = client.get(f"/sessions/{session.session_id}", headers=auth_headers)
    assert r.status_code == 404
    db.expire_all()
    assert db.query(ChatMessage).filter_by(session_id=session.session_id).count() == 0


def test_delete_other_users_session_is_forbidden(
    client, auth_headers, setup_other_user_session
):
    r = client.delete(
        f"/sessions/{setup_other_user_session.session_id}", headers=auth_headers
    )
    assert r.status_code == 403


def test_delete_missing_session_is_404(client, auth_headers):
    r = client.delete("/sessions/does-not-exist", headers=auth_headers)
    assert r.status_code == 404
    assert r.json() == {"error": "Session not found"}


def test_rate_limit_status(client, auth_headers):
    r = client.get("/rate-limit", headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"limit": 10, "used": 0, "remaining": 10, "is_limited": False}

    client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=auth_headers,
    )
    r = client.get("/rate-limit", headers=auth_headers)
    assert r.json()["used"] == 1


def test_rate_limit_status_anonymous(client):
    r = client.get("/rate-limit")
    assert r.status_code == 200
    assert r.json()["limit"] == 5
