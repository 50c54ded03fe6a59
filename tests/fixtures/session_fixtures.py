"""Fixtures for remote chat sessions and messages."""

import pytest

from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession
from app.utils.time_utils import now_ms


@pytest.fixture(scope="function")
def setup_session(db, faker, user_id):
    """A session owned by user_id with no messages."""
    now = now_ms()
    session = ChatSession(
        session_id=faker.uuid4(),
        owner_id=user_id,
        title=faker.sentence(nb_words=4)[:50],
        created_at=now,
        updated_at=now,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


@pytest.fixture(scope="function")
def setup_session_with_messages(db, faker, setup_session):
    """
    The setup_session with six alternating user/assistant messages.
    Returns (ChatSession, list of ChatMessage oldest first).
    """
    messages = []
    for i in range(6):
        message = ChatMessage(
            message_id=faker.uuid4(),
            session_id=setup_session.session_id,
            role="user" if i % 2 == 0 else "assistant",
            content=faker.sentence(),
            created_at=setup_session.created_at - 100 + i,
        )
        db.add(message)
        messages.append(message)
    db.commit()
    for m in messages:
        db.refresh(m)
    db.refresh(setup_session)
    return setup_session, messages


@pytest.fixture(scope="function")
def setup_other_user_session(db, faker, other_user_id):
    """A session owned by someone other than user_id."""
    now = now_ms()
    session = ChatSession(
        session_id=faker.uuid4(),
        owner_id=other_user_id,
        title="Someone else's chat",
        created_at=now,
        updated_at=now,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session
