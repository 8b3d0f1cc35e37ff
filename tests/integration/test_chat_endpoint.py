from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from kataba.services.completion.openai_client import OpenAICompletionProvider
from kataba.services.conversations import SQLConversationStore
from kataba.services.guest_quota import GUEST_LIMIT_MESSAGE, GUEST_UPSELL_SUFFIX
from kataba.services.session import COMPLETION_APOLOGY
from kataba.services.users import UserService
from tests.mocks.fake_openai import REPLY_TEXT, received_requests


def _user(content):
    return {"role": "user", "content": content}


class TestGuestChat:
    async def test_first_guest_message(self, anon_client):
        response = await anon_client.post(
            "/chat", json={"messages": [_user("I feel lonely")], "guestMessageCount": 0}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["content"] == REPLY_TEXT
        assert data["isGuestMode"] is True
        assert data["reachedLimit"] is False
        assert data["remainingMessages"] == 4

    async def test_missing_count_treated_as_zero(self, anon_client):
        response = await anon_client.post("/chat", json={"messages": [_user("hello")]})
        assert response.json()["remainingMessages"] == 4

    async def test_limit_reached_refused_without_upstream_call(self, anon_client):
        response = await anon_client.post(
            "/chat", json={"messages": [_user("hello again")], "guestMessageCount": 5}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["content"] == GUEST_LIMIT_MESSAGE
        assert data["reachedLimit"] is True
        assert data["remainingMessages"] == 0
        assert received_requests == []

    async def test_last_free_message_gets_upsell(self, anon_client):
        response = await anon_client.post(
            "/chat", json={"messages": [_user("one more")], "guestMessageCount": 4}
        )
        data = response.json()
        assert data["content"] == REPLY_TEXT + GUEST_UPSELL_SUFFIX
        assert data["reachedLimit"] is True
        assert data["remainingMessages"] == 0

    async def test_guest_conversation_id_ignored(self, anon_client):
        response = await anon_client.post(
            "/chat", json={"messages": [_user("hello")], "conversationId": "someone-elses"}
        )
        assert response.status_code == 200
        assert response.json()["conversationId"] is None

    async def test_invalid_token_falls_back_to_guest(self, anon_client):
        anon_client.headers["Authorization"] = "Bearer not-a-token"
        response = await anon_client.post("/chat", json={"messages": [_user("hello")]})
        assert response.status_code == 200
        assert response.json()["isGuestMode"] is True


class TestChatValidation:
    async def test_messages_not_a_list(self, anon_client):
        response = await anon_client.post("/chat", json={"messages": "hello"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_last_message_must_be_user(self, anon_client):
        response = await anon_client.post(
            "/chat",
            json={"messages": [_user("hi"), {"role": "assistant", "content": "hello"}]},
        )
        assert response.status_code == 400
        assert received_requests == []

    async def test_empty_messages(self, anon_client):
        response = await anon_client.post("/chat", json={"messages": []})
        assert response.status_code == 400

    async def test_blank_user_message(self, anon_client):
        response = await anon_client.post("/chat", json={"messages": [_user("   ")]})
        assert response.status_code == 400
        assert received_requests == []


class TestChatFailures:
    async def test_upstream_failure_returns_apology(self, anon_client):
        response = await anon_client.post(
            "/chat", json={"messages": [_user("FAIL now")], "guestMessageCount": 1}
        )
        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "upstream_completion_failure"
        assert data["content"] == COMPLETION_APOLOGY
        assert data["isGuestMode"] is True
        assert data["remainingMessages"] == 3

    async def test_missing_api_key(self, app_with_db, anon_client, fake_openai_http):
        app_with_db.state.completion_provider = OpenAICompletionProvider(
            base_url="http://fake-openai", api_key=None, model="gpt-4o-mini", http_client=fake_openai_http
        )
        response = await anon_client.post("/chat", json={"messages": [_user("hello")]})
        assert response.status_code == 500
        assert response.json()["error"] == "completion_not_configured"
        assert received_requests == []


class TestSignedInChat:
    async def test_unlimited_status(self, auth_client):
        response = await auth_client.post(
            "/chat", json={"messages": [_user("hello")], "guestMessageCount": 99}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["isGuestMode"] is False
        assert data["reachedLimit"] is False
        assert data["remainingMessages"] is None

    async def test_history_forwarded_with_persona(self, auth_client):
        history = [
            _user("My brother stopped talking to me"),
            {"role": "assistant", "content": "That sounds painful."},
            _user("It has been a year"),
        ]
        await auth_client.post("/chat", json={"messages": history})

        sent = received_requests[-1]["messages"]
        assert sent[0]["role"] == "system"
        assert [m["content"] for m in sent[1:]] == [m["content"] for m in history]

    async def test_selected_conversation_saved_in_background(self, app_with_db, auth_client):
        created = await auth_client.post(
            "/conversations", json={"title": "Family", "messages": [_user("hi")]}
        )
        conversation_id = created.json()["id"]

        messages = [_user("hi"), {"role": "assistant", "content": "hello"}, _user("I miss my sister")]
        response = await auth_client.post(
            "/chat", json={"messages": messages, "conversationId": conversation_id}
        )
        assert response.status_code == 200
        assert response.json()["conversationId"] == conversation_id

        await app_with_db.state.background_saver.drain()

        saved = (await auth_client.get(f"/conversations/{conversation_id}")).json()
        assert saved["title"] == "Family"
        assert [(m["role"], m["content"]) for m in saved["messages"]] == [
            ("user", "hi"),
            ("assistant", "hello"),
            ("user", "I miss my sister"),
            ("assistant", REPLY_TEXT),
        ]

    async def test_foreign_conversation_not_overwritten(self, app_with_db, auth_client, other_client):
        created = await auth_client.post(
            "/conversations", json={"title": "Private", "messages": [_user("mine")]}
        )
        conversation_id = created.json()["id"]

        response = await other_client.post(
            "/chat", json={"messages": [_user("intrude")], "conversationId": conversation_id}
        )
        assert response.status_code == 200
        await app_with_db.state.background_saver.drain()

        saved = (await auth_client.get(f"/conversations/{conversation_id}")).json()
        assert [m["content"] for m in saved["messages"]] == ["mine"]

    async def test_earlier_message_timestamps_survive_save(self, app_with_db, auth_client):
        stamped = {"role": "user", "content": "hi", "timestamp": "2020-01-01T00:00:00Z"}
        created = (await auth_client.post("/conversations", json={"title": "Family", "messages": [stamped]})).json()
        before = created["messages"][0]["timestamp"]
        assert before == 1577836800000.0

        response = await auth_client.post(
            "/chat",
            json={"messages": [stamped, _user("still here")], "conversationId": created["id"]},
        )
        assert response.status_code == 200
        await app_with_db.state.background_saver.drain()

        saved = (await auth_client.get(f"/conversations/{created['id']}")).json()
        assert len(saved["messages"]) == 3
        assert saved["messages"][0]["timestamp"] == before


class TestDatabaseUnavailable:
    async def test_reply_not_blocked_by_database(self, app_with_db, auth_client, tmp_path):
        # Engine pointing at a directory that does not exist
        broken = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/db.sqlite")
        factory = async_sessionmaker(broken, class_=AsyncSession, expire_on_commit=False)
        app_with_db.state.user_service = UserService(factory)
        app_with_db.state.conversation_store = SQLConversationStore(factory)
        try:
            response = await auth_client.post(
                "/chat", json={"messages": [_user("are you there")], "conversationId": "conv-1"}
            )
            await app_with_db.state.background_saver.drain()
        finally:
            await broken.dispose()

        assert response.status_code == 200
        data = response.json()
        assert data["content"] == REPLY_TEXT
        assert data["isGuestMode"] is False
        assert data["conversationId"] == "conv-1"
