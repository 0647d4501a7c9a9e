"""
Tests for memo broadcast and acknowledgement through the event relay.
"""
import pytest
from sqlalchemy import func, select

from app.core.exceptions import AuthorizationDenied, InvalidPayload, NotFound
from app.db import crud
from app.db.models import Memo
from app.realtime.auth import Identity
from app.services.notifications import DeliveryResult, NotificationKind


def memo_body(*recipients, **overrides):
    body = {
        "title": "Quarterly stock count",
        "content": "All branches close early on Friday for the stock count.",
        "severity": "high",
        "recipientIds": [u.id for u in recipients],
    }
    body.update(overrides)
    return body


class TestCreateMemo:

    @pytest.mark.anyio
    async def test_online_recipients_get_live_event(self, relay, server, connect, users):
        alice, bob = users["alice"], users["bob"]
        await connect(alice, "sid-a")
        server.reset()

        result = await relay.create_memo(Identity.from_user(users["admin"]), memo_body(alice, bob))

        memo = result["memo"]
        assert memo["recipientIds"] == [alice.id, bob.id]
        assert memo["createdBy"]["name"] == "Admin"
        assert server.received("sid-a", "new_memo") == [memo]
        # Bob is offline: only the personal-room emit to Alice happened
        assert [e.room for e in server.events("new_memo")] == [f"user_{alice.id}"]

    @pytest.mark.anyio
    async def test_dispatcher_called_for_every_recipient(self, relay, dispatcher, connect, users):
        alice, bob = users["alice"], users["bob"]
        await connect(alice, "sid-a")

        result = await relay.create_memo(Identity.from_user(users["admin"]), memo_body(alice, bob))

        dispatcher.notify.assert_awaited_once()
        kind, payload, recipients = dispatcher.notify.await_args.args
        assert kind == NotificationKind.memo_created
        assert payload == result["memo"]
        assert list(recipients) == [alice.id, bob.id]

    @pytest.mark.anyio
    async def test_notification_outcomes_returned(self, relay, dispatcher, users):
        dispatcher.notify.return_value = [DeliveryResult(users["bob"].id, "email", success=True, detail="<id@x>")]

        result = await relay.create_memo(Identity.from_user(users["admin"]), memo_body(users["bob"]))

        assert result["notifications"] == [
            {"user_id": users["bob"].id, "channel": "email", "success": True, "skipped": False, "detail": "<id@x>"}
        ]

    @pytest.mark.anyio
    async def test_dispatcher_failure_does_not_fail_the_write(self, relay, dispatcher, session_factory, users):
        dispatcher.notify.side_effect = RuntimeError("smtp relay exploded")

        result = await relay.create_memo(Identity.from_user(users["admin"]), memo_body(users["bob"]))

        assert result["notifications"] == []
        async with session_factory() as db:
            assert await crud.get_memo(db, result["memo"]["id"]) is not None

    @pytest.mark.anyio
    async def test_non_admin_denied(self, relay, server, dispatcher, session_factory, users):
        with pytest.raises(AuthorizationDenied):
            await relay.create_memo(Identity.from_user(users["alice"]), memo_body(users["bob"]))

        assert server.emitted == []
        dispatcher.notify.assert_not_called()
        async with session_factory() as db:
            assert (await db.execute(select(func.count(Memo.id)))).scalar_one() == 0

    @pytest.mark.anyio
    async def test_unknown_recipient_rejected(self, relay, dispatcher, users):
        with pytest.raises(NotFound):
            await relay.create_memo(
                Identity.from_user(users["admin"]),
                memo_body(users["bob"], recipientIds=[users["bob"].id, 9999]),
            )
        dispatcher.notify.assert_not_called()

    @pytest.mark.anyio
    async def test_empty_recipients_rejected(self, relay, users):
        with pytest.raises(InvalidPayload):
            await relay.create_memo(Identity.from_user(users["admin"]), memo_body(recipientIds=[]))

    @pytest.mark.anyio
    async def test_unknown_severity_rejected(self, relay, users):
        with pytest.raises(InvalidPayload):
            await relay.create_memo(Identity.from_user(users["admin"]), memo_body(users["bob"], severity="apocalyptic"))


class TestAcknowledgeMemo:

    async def _memo(self, relay, users):
        result = await relay.create_memo(Identity.from_user(users["admin"]), memo_body(users["alice"], users["bob"]))
        return result["memo"]

    @pytest.mark.anyio
    async def test_ack_reaches_creator(self, relay, server, connect, users):
        await connect(users["admin"], "sid-admin")
        memo = await self._memo(relay, users)
        server.reset()

        ack = await relay.acknowledge_memo(
            Identity.from_user(users["bob"]), {"memoId": memo["id"], "comment": "Noted"}
        )

        assert ack["memoId"] == memo["id"]
        assert ack["userId"] == users["bob"].id
        assert ack["comment"] == "Noted"
        assert ack["acknowledgedAt"] is not None
        assert server.received("sid-admin", "memo_acknowledged") == [ack]

    @pytest.mark.anyio
    async def test_ack_is_idempotent(self, relay, server, connect, users, session_factory):
        await connect(users["admin"], "sid-admin")
        memo = await self._memo(relay, users)
        bob = Identity.from_user(users["bob"])

        first = await relay.acknowledge_memo(bob, {"memoId": memo["id"], "comment": "Noted"})
        server.reset()
        second = await relay.acknowledge_memo(bob, {"memoId": memo["id"], "comment": "Again"})

        assert second["acknowledgedAt"] == first["acknowledgedAt"]
        assert second["comment"] == "Noted"
        assert server.emitted == []

    @pytest.mark.anyio
    async def test_non_recipient_denied(self, relay, users):
        memo = await self._memo(relay, users)
        with pytest.raises(AuthorizationDenied):
            await relay.acknowledge_memo(Identity.from_user(users["carol"]), {"memoId": memo["id"]})

    @pytest.mark.anyio
    async def test_unknown_memo(self, relay, users):
        with pytest.raises(NotFound):
            await relay.acknowledge_memo(Identity.from_user(users["bob"]), {"memoId": 404})
