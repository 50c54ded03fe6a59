"""Tests for merging persisted history with the live turn."""

from app.client.merge_view import LiveTurn, merge_messages
from app.schemas.session import MessageRead


def _persisted(message_id, created_at, role="user", content="text"):
    return MessageRead(
        message_id=message_id,
        session_id="s1",
        role=role,
        content=content,
        created_at=created_at,
    )


HISTORY = [
    _persisted("m2", 200, "assistant"),
    _persisted("m1", 100),
]


def test_no_live_turn_returns_persisted_sorted():
    merged = merge_messages(HISTORY, None, "authenticated")
    assert [m.id for m in merged] == ["m1", "m2"]
    assert all(m.source == "remote" for m in merged)
    assert not any(m.is_streaming for m in merged)


def test_live_turn_is_appended_after_newest():
    turn = LiveTurn("u1", "hi there", "a1", "partial")
    merged = merge_messages(HISTORY, turn, "anonymous")

    assert [m.id for m in merged] == ["m1", "m2", "u1", "a1"]
    user, assistant = merged[-2], merged[-1]
    assert user.created_at == 201
    assert user.content == "hi there"
    assert user.is_streaming is False
    assert assistant.created_at == 202
    assert assistant.content == "partial"
    assert assistant.is_streaming is True
    assert merged[0].source == "local"
    assert user.source == "live"


def test_assistant_line_waits_for_metadata():
    merged = merge_messages([], LiveTurn("u1", "hello"), "anonymous")
    assert [(m.id, m.role, m.created_at) for m in merged] == [("u1", "user", 1)]


def test_persisted_ids_are_not_duplicated():
    """Once the store has the turn, the live copies are dropped."""
    persisted = HISTORY + [_persisted("u1", 300), _persisted("a1", 301, "assistant")]
    turn = LiveTurn("u1", "hello", "a1", "full reply")
    merged = merge_messages(persisted, turn, "authenticated")
    assert [m.id for m in merged] == ["m1", "m2", "u1", "a1"]
    assert not any(m.is_streaming for m in merged)


def test_user_persisted_assistant_still_live():
    persisted = HISTORY + [_persisted("u1", 300)]
    merged = merge_messages(persisted, LiveTurn("u1", "hello", "a1", "so far"), "authenticated")
    assert [m.id for m in merged] == ["m1", "m2", "u1", "a1"]
    assert merged[-1].created_at == 301
    assert merged[-1].is_streaming is True


def test_merge_is_deterministic():
    turn = LiveTurn("u1", "hello", "a1", "reply")
    first = merge_messages(list(HISTORY), turn, "anonymous")
    second = merge_messages(list(reversed(HISTORY)), turn, "anonymous")
    assert first == second
    assert merge_messages(list(HISTORY), turn, "anonymous") == first
