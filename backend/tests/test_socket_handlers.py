"""
Tests for the Socket.IO connect/disconnect handlers and client event dispatch.
"""
import pytest
from socketio.exceptions import ConnectionRefusedError

from app.realtime import socket as socket_module
from app.realtime.auth import authenticate_socket
from app.realtime.events import ClientEvent


@pytest.fixture
def wired(monkeypatch, rooms, presence, relay, session_factory):
    """Point the socket module's singletons at the per-test router, presence and relay."""
    async def _authenticate(auth=None, environ=None):
        return await authenticate_socket(auth, environ, session_factory=session_factory)

    monkeypatch.setattr(socket_module, "rooms", rooms)
    monkeypatch.setattr(socket_module, "presence", presence)
    monkeypatch.setattr(socket_module, "relay", relay)
    monkeypatch.setattr(socket_module, "connections", {})
    monkeypatch.setattr(socket_module, "authenticate_socket", _authenticate)
    return socket_module


class TestConnect:

    @pytest.mark.anyio
    async def test_refuses_without_token(self, wired, server, users):
        with pytest.raises(ConnectionRefusedError) as exc:
            await wired.connect("sid-x", {}, None)

        assert exc.value.error_args["data"]["code"] == "unauthenticated"
        assert wired.connections == {}
        assert server.rooms == {}

    @pytest.mark.anyio
    async def test_refuses_inactive_user(self, wired, users, token_for):
        with pytest.raises(ConnectionRefusedError) as exc:
            await wired.connect("sid-x", {}, {"token": token_for(users["dave"])})

        assert exc.value.error_args["data"]["code"] == "unknown_subject"

    @pytest.mark.anyio
    async def test_accepts_and_joins_personal_room(self, wired, server, presence, users, token_for):
        alice = users["alice"]

        assert await wired.connect("sid-a", {}, {"token": token_for(alice)}) is True
        assert server.received("sid-a", "connected") == []
        await wired.relay.drain()

        assert server.rooms[f"user_{alice.id}"] == {"sid-a"}
        assert presence.current_handle(alice.id) == "sid-a"
        assert server.received("sid-a", "connected") == [{"userId": alice.id, "role": "employee"}]

    @pytest.mark.anyio
    async def test_header_token_accepted(self, wired, users, token_for):
        environ = {"HTTP_AUTHORIZATION": f"Bearer {token_for(users['bob'])}"}
        assert await wired.connect("sid-b", environ, None) is True


class TestDisconnect:

    @pytest.mark.anyio
    async def test_disconnect_marks_offline_and_clears_typing(
        self, wired, server, presence, rooms, users, token_for, open_conversation
    ):
        alice, bob = users["alice"], users["bob"]
        await open_conversation("c1", alice, bob)
        await wired.connect("sid-a", {}, {"token": token_for(alice)})
        await wired.connect("sid-b", {}, {"token": token_for(bob)})
        await wired.dispatch(ClientEvent.join_conversations, "sid-a", {"conversationIds": ["c1"]})
        await wired.dispatch(ClientEvent.join_conversations, "sid-b", {"conversationIds": ["c1"]})
        await wired.dispatch(ClientEvent.typing, "sid-a", {"conversationId": "c1", "isTyping": True})
        server.reset()

        await wired.disconnect("sid-a")

        typing = server.received("sid-b", "user_typing")
        assert typing == [{"userId": alice.id, "name": "Alice", "conversationId": "c1", "isTyping": False}]
        assert server.received("sid-b", "user_offline")[0]["userId"] == alice.id
        assert not presence.is_online(alice.id)
        assert rooms.user_for("sid-a") is None

    @pytest.mark.anyio
    async def test_superseded_connection_does_not_go_offline(self, wired, server, presence, users, token_for):
        alice = users["alice"]
        await wired.connect("sid-old", {}, {"token": token_for(alice)})
        await wired.connect("sid-new", {}, {"token": token_for(alice)})
        server.reset()

        await wired.disconnect("sid-old")

        assert presence.current_handle(alice.id) == "sid-new"
        assert server.events("user_offline") == []

    @pytest.mark.anyio
    async def test_unknown_connection_disconnect_is_quiet(self, wired, server):
        await wired.disconnect("sid-never-authenticated")
        assert server.emitted == []


class TestDispatch:

    @pytest.mark.anyio
    async def test_every_client_event_has_a_handler(self):
        assert set(socket_module.HANDLERS) == set(ClientEvent)

    @pytest.mark.anyio
    async def test_join_conversations_acknowledged(self, wired, server, users, token_for, open_conversation):
        await open_conversation("c1", users["alice"], users["bob"])
        await open_conversation("2", users["alice"], users["carol"])
        await wired.connect("sid-a", {}, {"token": token_for(users["alice"])})

        ack = await wired.dispatch(ClientEvent.join_conversations, "sid-a", {"conversationIds": ["c1", 2]})

        assert ack == {"success": True, "data": {"conversationIds": ["c1", "2"]}}
        assert server.received("sid-a", "conversations_joined") == [{"conversationIds": ["c1", "2"]}]

    @pytest.mark.anyio
    async def test_send_message_over_socket(self, wired, server, users, token_for, open_conversation):
        alice, bob = users["alice"], users["bob"]
        await open_conversation("c1", alice, bob)
        await wired.connect("sid-a", {}, {"token": token_for(alice)})
        await wired.connect("sid-b", {}, {"token": token_for(bob)})
        await wired.dispatch(ClientEvent.join_conversations, "sid-b", {"conversationIds": ["c1"]})

        ack = await wired.dispatch(
            ClientEvent.send_message, "sid-a", {"receiverId": bob.id, "text": "hi", "conversationId": "c1"}
        )

        assert ack["success"] is True
        assert server.received("sid-b", "receive_message") == [ack["data"]]

    @pytest.mark.anyio
    async def test_errors_go_to_origin_only(self, wired, server, users, token_for):
        await wired.connect("sid-a", {}, {"token": token_for(users["alice"])})
        await wired.connect("sid-b", {}, {"token": token_for(users["bob"])})
        server.reset()

        ack = await wired.dispatch(
            ClientEvent.create_memo, "sid-a",
            {"title": "t", "content": "c", "recipientIds": [users["bob"].id]},
        )

        assert ack["success"] is False
        assert ack["error"]["code"] == "authorization_denied"
        assert server.received("sid-a", "memo_error") == [ack["error"]]
        assert server.received("sid-b", "memo_error") == []

    @pytest.mark.anyio
    async def test_outsider_cannot_join_conversation(self, wired, server, users, token_for, open_conversation):
        await open_conversation("c1", users["alice"], users["bob"])
        await wired.connect("sid-c", {}, {"token": token_for(users["carol"])})
        await wired.relay.drain()
        server.reset()

        ack = await wired.dispatch(ClientEvent.join_conversations, "sid-c", {"conversationIds": ["c1"]})

        assert ack["error"]["code"] == "authorization_denied"
        assert server.received("sid-c", "conversation_error") == [ack["error"]]
        assert "sid-c" not in server.rooms.get("conversation_c1", set())

    @pytest.mark.anyio
    async def test_unknown_conversation_cannot_be_joined(self, wired, users, token_for):
        await wired.connect("sid-a", {}, {"token": token_for(users["alice"])})

        ack = await wired.dispatch(ClientEvent.join_conversations, "sid-a", {"conversationIds": ["nope"]})

        assert ack["error"]["code"] == "authorization_denied"

    @pytest.mark.anyio
    async def test_typing_requires_joined_conversation(self, wired, server, users, token_for, open_conversation):
        await open_conversation("c1", users["alice"], users["bob"])
        await wired.connect("sid-c", {}, {"token": token_for(users["carol"])})
        await wired.connect("sid-b", {}, {"token": token_for(users["bob"])})
        await wired.dispatch(ClientEvent.join_conversations, "sid-b", {"conversationIds": ["c1"]})
        await wired.relay.drain()
        server.reset()

        ack = await wired.dispatch(ClientEvent.typing, "sid-c", {"conversationId": "c1", "isTyping": True})

        assert ack["error"]["code"] == "authorization_denied"
        assert server.received("sid-b", "user_typing") == []

    @pytest.mark.anyio
    async def test_invalid_payload_reported_as_scoped_error(self, wired, server, users, token_for):
        await wired.connect("sid-a", {}, {"token": token_for(users["alice"])})
        await wired.relay.drain()
        server.reset()

        ack = await wired.dispatch(ClientEvent.send_message, "sid-a", {"text": "no receiver"})

        assert ack["error"]["code"] == "invalid_payload"
        assert [e.event for e in server.emitted] == ["message_error"]

    @pytest.mark.anyio
    async def test_unregistered_connection_gets_error(self, wired, server):
        ack = await wired.dispatch(ClientEvent.send_message, "sid-ghost", {})

        assert ack["error"]["code"] == "unauthenticated"
        assert server.events("error")[0].room == "sid-ghost"

    @pytest.mark.anyio
    async def test_unexpected_error_is_contained(self, wired, server, monkeypatch, users, token_for):
        await wired.connect("sid-a", {}, {"token": token_for(users["alice"])})

        async def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setitem(socket_module.HANDLERS, ClientEvent.update_task, explode)
        ack = await wired.dispatch(ClientEvent.update_task, "sid-a", {"taskId": 1})

        assert ack["success"] is False
        assert ack["error"]["code"] == "realtime_error"
        assert server.received("sid-a", "task_error")
