"""The client orchestrator driving the real /chat endpoint in-process."""

import httpx
import pytest

from app.client.api import SessionsApiClient
from app.client.connection import ChatConnection
from app.client.local_store import LocalSessionStore
from app.client.orchestrator import ChatOrchestrator, TurnPhase
from app.client.storage import MemoryStorage
from app.exceptions import QuotaExceeded
from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession
from tests.fixtures.auth_fixtures import make_token


@pytest.fixture
def http_client(api_app):
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=api_app), base_url="http://chat.test"
    )


@pytest.mark.asyncio
async def test_anonymous_conversation_round_trip(http_client, db, fake_llm):
    local_store = LocalSessionStore(MemoryStorage())

    async def no_token():
        return None

    orchestrator = ChatOrchestrator(
        ChatConnection("http://chat.test", client=http_client),
        local_store,
        no_token,
    )
    async with http_client:
        await orchestrator.submit("Plan a trip to Lisbon")
        await orchestrator.submit("Make it three days")

    session_id = orchestrator.session_id
    assert session_id
    messages = local_store.get_messages(session_id)
    assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]
    assert messages[1].content == fake_llm.reply
    assert local_store.get_session(session_id).title == "Plan a trip to Lisbon"
    assert [h.content for h in fake_llm.calls[1]][:2] == [
        "Plan a trip to Lisbon",
        fake_llm.reply,
    ]
    db.expire_all()
    assert db.query(ChatSession).count() == 0


@pytest.mark.asyncio
async def test_authenticated_conversation_round_trip(http_client, db, user_id):
    token = make_token(user_id)
    refreshed = []

    async def token_provider():
        return token

    api = SessionsApiClient("http://chat.test", token_provider, client=http_client)
    orchestrator = ChatOrchestrator(
        ChatConnection("http://chat.test", client=http_client),
        LocalSessionStore(MemoryStorage()),
        token_provider,
        on_refresh=refreshed.append,
        api_client=api,
    )
    async with http_client:
        await orchestrator.submit("Hello server")
        page = await orchestrator.store.list_messages(orchestrator.session_id)
        sessions = await api.list_sessions()

    assert refreshed == [orchestrator.session_id]
    assert [m.role for m in page.items] == ["user", "assistant"]
    assert [s.session_id for s in sessions.items] == [orchestrator.session_id]
    assert orchestrator.merged_messages(page.items)[0].source == "remote"
    db.expire_all()
    assert db.query(ChatMessage).count() == 2


@pytest.mark.asyncio
async def test_quota_surfaces_on_the_client(http_client):
    async def no_token():
        return None

    orchestrator = ChatOrchestrator(
        ChatConnection("http://chat.test", client=http_client),
        LocalSessionStore(MemoryStorage()),
        no_token,
    )
    async with http_client:
        for i in range(5):
            await orchestrator.submit(f"message {i}")
        with pytest.raises(QuotaExceeded) as exc_info:
            await orchestrator.submit("one too many")

    assert exc_info.value.limit == 5
    assert orchestrator.phase is TurnPhase.ERRORED
    assert len(orchestrator.local_store.get_messages(orchestrator.session_id)) == 10
