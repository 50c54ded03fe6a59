"""Tests for POST /chat."""

import json

from fastapi.testclient import TestClient

from app.main import create_app
from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession
from app.models.rate_limit import RateLimitRecord
from app.routers.utils.dependencies import get_llm
from tests.fixtures.llm_fixtures import FakeLLM


def parse_events(response):
    events = []
    for line in response.text.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: ") :]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


def chat_body(text, **extra):
    body = {"messages": [{"role": "user", "content": text}]}
    body.update(extra)
    return body


def test_authenticated_new_session(client, db, auth_headers, user_id, fake_llm):
    """A new authenticated conversation creates the session and both messages."""
    r = client.post(
        "/chat",
        json=chat_body("What is the capital of France?", userMessageId="client-msg-1"),
        headers=auth_headers,
    )
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")

    events = parse_events(r)
    meta = events[0]["metadata"]
    assert events[0]["type"] == "metadata"
    assert meta["userMessageId"] == "client-msg-1"
    session_id = meta["sessionId"]
    assistant_id = meta["assistantMessageId"]

    contents = [e for e in events if isinstance(e, dict) and e["type"] == "content"]
    assert [e["delta"] for e in contents] == fake_llm.chunks
    assert contents[-1]["content"] == fake_llm.reply
    assert events[-2]["type"] == "done"
    assert events[-2]["finishReason"] == "stop"
    assert events[-1] == "[DONE]"

    db.expire_all()
    session = db.query(ChatSession).filter_by(session_id=session_id).one()
    assert session.owner_id == user_id
    assert session.title == "What is the capital of France?"
    messages = (
        db.query(ChatMessage)
        .filter_by(session_id=session_id)
        .order_by(ChatMessage.created_at, ChatMessage.id)
        .all()
    )
    assert [(m.message_id, m.role) for m in messages] == [
        ("client-msg-1", "user"),
        (assistant_id, "assistant"),
    ]
    assert messages[1].content == fake_llm.reply

    record = db.query(RateLimitRecord).filter_by(identifier=user_id).one()
    assert record.message_count == 1


def test_title_is_truncated(client, db, auth_headers):
    r = client.post("/chat", json=chat_body("x" * 80), headers=auth_headers)
    session_id = parse_events(r)[0]["metadata"]["sessionId"]
    db.expire_all()
    assert db.query(ChatSession).filter_by(session_id=session_id).one().title == "x" * 50


def test_existing_session_uses_full_history(
    client, db, auth_headers, setup_session_with_messages, fake_llm
):
    session, messages = setup_session_with_messages
    r = client.post(
        "/chat",
        json=chat_body("Follow-up", sessionId=session.session_id),
        headers=auth_headers,
    )
    assert r.status_code == 200
    meta = parse_events(r)[0]["metadata"]
    assert "sessionId" not in meta

    history = fake_llm.calls[0]
    assert [h.content for h in history] == [m.content for m in messages] + ["Follow-up"]
    db.expire_all()
    assert db.query(ChatMessage).filter_by(session_id=session.session_id).count() == 8


def test_other_users_session_is_forbidden(
    client, db, auth_headers, setup_other_user_session
):
    r = client.post(
        "/chat",
        json=chat_body("Let me in", sessionId=setup_other_user_session.session_id),
        headers=auth_headers,
    )
    assert r.status_code == 403
    assert "error" in r.json()
    db.expire_all()
    assert (
        db.query(ChatMessage)
        .filter_by(session_id=setup_other_user_session.session_id)
        .count()
        == 0
    )


def test_anonymous_turn_is_not_persisted(client, db, fake_llm):
    """Anonymous callers supply their history; nothing is stored server-side."""
    body = chat_body(
        "And then?",
        anonymousId="anon_123",
        isAnonymous=True,
        messageHistory=[
            {"role": "user", "content": "Tell me a story"},
            {"role": "assistant", "content": "Once upon a time"},
        ],
    )
    r = client.post("/chat", json=body)
    assert r.status_code == 200
    events = parse_events(r)
    assert events[0]["metadata"]["sessionId"]
    assert events[-1] == "[DONE]"

    history = fake_llm.calls[0]
    assert [(h.role, h.content) for h in history] == [
        ("user", "Tell me a story"),
        ("assistant", "Once upon a time"),
        ("user", "And then?"),
    ]
    db.expire_all()
    assert db.query(ChatSession).count() == 0
    assert db.query(ChatMessage).count() == 0
    record = db.query(RateLimitRecord).one()
    assert record.identifier == "testclient"
    assert record.identifier_type == "ip"


def test_forwarded_ip_is_the_quota_key(client, db):
    client.post(
        "/chat",
        json=chat_body("hi", anonymousId="anon_1", isAnonymous=True),
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
    )
    db.expire_all()
    assert db.query(RateLimitRecord).one().identifier == "203.0.113.7"


def test_authenticated_but_anonymous_mode_skips_persistence(client, db, auth_headers, user_id):
    r = client.post(
        "/chat",
        json=chat_body("private", anonymousId="anon_9", isAnonymous=True),
        headers=auth_headers,
    )
    assert r.status_code == 200
    db.expire_all()
    assert db.query(ChatMessage).count() == 0
    assert db.query(RateLimitRecord).one().identifier == user_id


def test_invalid_token_falls_back_to_anonymous(client, db):
    r = client.post(
        "/chat",
        json=chat_body("hello", anonymousId="anon_2"),
        headers={"Authorization": "Bearer not-a-real-token"},
    )
    assert r.status_code == 200
    db.expire_all()
    assert db.query(ChatSession).count() == 0


def test_identity_required(client):
    r = client.post("/chat", json=chat_body("hello"))
    assert r.status_code == 400
    assert r.json() == {"error": "User identification required"}


def test_eleventh_message_is_rejected(client, db, auth_headers, setup_session):
    """After ten counted messages the next request gets 429 and stores nothing."""
    for i in range(10):
        r = client.post(
            "/chat",
            json=chat_body(f"message {i}", sessionId=setup_session.session_id),
            headers=auth_headers,
        )
        assert r.status_code == 200

    db.expire_all()
    before = db.query(ChatMessage).filter_by(session_id=setup_session.session_id).count()
    assert before == 20

    r = client.post(
        "/chat",
        json=chat_body("one more", sessionId=setup_session.session_id),
        headers=auth_headers,
    )
    assert r.status_code == 429
    data = r.json()
    assert data["limit"] == 10
    assert data["remaining"] == 0
    assert data["resetAt"].endswith("T23:59:59Z")
    assert "error" in data
    assert r.headers["X-RateLimit-Limit"] == "10"
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert r.headers["X-RateLimit-Reset"] == data["resetAt"]

    db.expire_all()
    after = db.query(ChatMessage).filter_by(session_id=setup_session.session_id).count()
    assert after == before


def test_anonymous_limit_is_five(client):
    body = chat_body("hi", anonymousId="anon_3", isAnonymous=True)
    statuses = [client.post("/chat", json=body).status_code for _ in range(6)]
    assert statuses == [200] * 5 + [429]


def test_upstream_failure_mid_stream(api_app, db, auth_headers, user_id):
    """A provider failure ends the stream with an error event; no reply, no count."""
    failing = FakeLLM(chunks=["partial", "never"], fail_after=1)
    api_app.dependency_overrides[get_llm] = lambda: failing
    with TestClient(api_app) as client:
        r = client.post("/chat", json=chat_body("Hello"), headers=auth_headers)

    assert r.status_code == 200
    events = parse_events(r)
    assert events[-1] == {"type": "error", "error": {"message": "An error occurred"}}
    assert "[DONE]" not in events

    db.expire_all()
    messages = db.query(ChatMessage).all()
    assert [m.role for m in messages] == ["user"]
    assert db.query(RateLimitRecord).filter_by(identifier=user_id).count() == 0


def test_llm_not_configured(db, session_factory, auth_headers, monkeypatch):
    monkeypatch.delenv("LITELLM_API_KEY", raising=False)
    application = create_app(testing=True)
    with TestClient(application) as client:
        r = client.post("/chat", json=chat_body("Hello"), headers=auth_headers)
    assert r.status_code == 500
    assert r.json() == {"error": "LITELLM_API_KEY not configured"}
