import asyncio

import pytest
from sqlmodel import Session, select

from chatgateway.api.api_models import Principal
from chatgateway.api.conversation_store import ConversationStore
from chatgateway.api.errors import NotFound, PersistenceError
from chatgateway.api.models import Message
from chatgateway.api.relay_service import RelayState, StreamRelay, ThreadLockRegistry, describe_provider_failure
from chatgateway.api.transcript import TranscriptBuilder, TranscriptTurn
from conftest import FakeChatProvider


OWNER = Principal(id="ep-owner", email="owner@example.com")
STRANGER = Principal(id="ep-stranger", email="stranger@example.com")


@pytest.fixture
def engine(context):
    return context.engine


@pytest.fixture
def chat_id(engine):
    with Session(engine) as db:
        return ConversationStore(db).create_chat(OWNER.id).id


def make_relay(engine, provider=None):
    return StreamRelay(engine, provider or FakeChatProvider(), ThreadLockRegistry())


def stored_messages(engine, chat_id):
    with Session(engine) as db:
        return [(m.role, m.content) for m in ConversationStore(db).list_messages(chat_id)]


def stored_title(engine, chat_id):
    with Session(engine) as db:
        return ConversationStore(db).get_owned_chat(chat_id, OWNER.id).title


async def collect(events):
    return [event async for event in events]


def test_successful_turn_streams_then_persists(engine, chat_id):
    provider = FakeChatProvider(["Hel", "lo", " back"])
    relay = make_relay(engine, provider)

    events = asyncio.run(collect(relay.send_message(chat_id, OWNER, "Hello")))

    assert [e.content for e in events[:-1]] == ["Hel", "lo", " back"]
    assert events[-1].done is True
    assert [e.is_terminal for e in events] == [False, False, False, True]
    assert stored_messages(engine, chat_id) == [("user", "Hello"), ("assistant", "Hello back")]
    assert provider.calls == [{"history": [], "message": "Hello"}]


def test_title_comes_from_first_message_only(engine, chat_id):
    relay = make_relay(engine)
    first = "Plan a seven day itinerary for a rail trip across northern Italy in May"

    asyncio.run(collect(relay.send_message(chat_id, OWNER, first)))
    assert stored_title(engine, chat_id) == first[:50]

    asyncio.run(collect(relay.send_message(chat_id, OWNER, "Make it five days")))
    assert stored_title(engine, chat_id) == first[:50]


def test_history_excludes_new_message_and_maps_roles(engine, chat_id):
    provider = FakeChatProvider(["Sure"])
    relay = make_relay(engine, provider)

    asyncio.run(collect(relay.send_message(chat_id, OWNER, "one")))
    asyncio.run(collect(relay.send_message(chat_id, OWNER, "two")))

    assert provider.calls[1] == {
        "history": [TranscriptTurn(role="user", content="one"), TranscriptTurn(role="model", content="Sure")],
        "message": "two",
    }


def test_provider_failure_midstream_keeps_user_message_only(engine, chat_id):
    relay = make_relay(engine, FakeChatProvider(["Hi", " there"], fail_after=1))

    events = asyncio.run(collect(relay.send_message(chat_id, OWNER, "Hello")))

    assert events[0].content == "Hi"
    assert events[-1].error == "Failed to generate response"
    assert events[-1].code == "provider_error"
    assert not any(e.done for e in events)
    assert stored_messages(engine, chat_id) == [("user", "Hello")]


def test_quota_failure_is_reported_as_billing(engine, chat_id):
    provider = FakeChatProvider(["Hi"], fail_after=0, error=RuntimeError("Error code: 429 - quota exceeded"))
    events = asyncio.run(collect(make_relay(engine, provider).send_message(chat_id, OWNER, "Hello")))

    assert len(events) == 1
    assert events[0].code == "billing_required"


def test_empty_reply_is_an_error(engine, chat_id):
    events = asyncio.run(collect(make_relay(engine, FakeChatProvider([])).send_message(chat_id, OWNER, "Hello")))

    assert len(events) == 1
    assert events[0].code == "provider_error"
    assert stored_messages(engine, chat_id) == [("user", "Hello")]


def test_foreign_chat_is_not_found_and_writes_nothing(engine, chat_id):
    provider = FakeChatProvider()
    relay = make_relay(engine, provider)
    lock = relay.thread_locks.get(chat_id)

    with pytest.raises(NotFound):
        asyncio.run(relay.begin(chat_id, STRANGER, "Hello"))

    assert not lock.locked()
    assert provider.calls == []
    assert stored_messages(engine, chat_id) == []


def test_user_message_failure_skips_provider(engine, chat_id, monkeypatch):
    def failing_add_message(self, chat_id, role, content):
        raise PersistenceError("Failed to save message")

    monkeypatch.setattr(ConversationStore, "add_message", failing_add_message)
    provider = FakeChatProvider()
    relay = make_relay(engine, provider)
    lock = relay.thread_locks.get(chat_id)

    with pytest.raises(PersistenceError):
        asyncio.run(collect(relay.send_message(chat_id, OWNER, "Hello")))

    assert provider.calls == []
    assert not lock.locked()


def test_assistant_persistence_failure_is_not_reported_as_done(engine, chat_id, monkeypatch):
    original = ConversationStore.add_message

    def add_message(self, chat_id, role, content):
        if role == "assistant":
            raise PersistenceError("Failed to save message")
        return original(self, chat_id, role, content)

    monkeypatch.setattr(ConversationStore, "add_message", add_message)

    events = asyncio.run(collect(make_relay(engine).send_message(chat_id, OWNER, "Hello")))

    assert [e.content for e in events[:-1]] == ["Hi", " there", "!"]
    assert events[-1].code == "persistence_error"
    assert not any(e.done for e in events)
    assert stored_messages(engine, chat_id) == [("user", "Hello")]


def test_client_disconnect_discards_partial_reply(engine, chat_id):
    relay = make_relay(engine)
    checks = []

    async def is_disconnected():
        checks.append(True)
        return len(checks) > 1

    async def scenario():
        lock = relay.thread_locks.get(chat_id)
        turn = await relay.begin(chat_id, OWNER, "Hello")
        events = await collect(turn.events(is_disconnected))
        return turn, events, lock.locked()

    turn, events, still_locked = asyncio.run(scenario())

    assert [e.content for e in events] == ["Hi"]
    assert turn.state == RelayState.ERROR_TERMINATED
    assert not still_locked
    assert stored_messages(engine, chat_id) == [("user", "Hello")]


def test_abandoned_turn_releases_lock(engine, chat_id):
    relay = make_relay(engine)

    async def scenario():
        lock = relay.thread_locks.get(chat_id)
        turn = await relay.begin(chat_id, OWNER, "Hello")
        assert lock.locked()
        await turn.close()
        turn.release()
        return lock.locked()

    assert asyncio.run(scenario()) is False


class GatedProvider(FakeChatProvider):
    """Holds its first reply until released."""

    def __init__(self):
        super().__init__(["reply"])
        self.gate = None

    async def stream_reply(self, history, message, cancellation_token=None):
        if not self.calls:
            await self.gate.wait()
        async for fragment in super().stream_reply(history, message, cancellation_token):
            yield fragment


def test_turns_on_the_same_chat_are_serialized(engine, chat_id):
    provider = GatedProvider()
    relay = make_relay(engine, provider)

    async def scenario():
        provider.gate = asyncio.Event()
        first = asyncio.create_task(collect(relay.send_message(chat_id, OWNER, "first")))
        await asyncio.sleep(0.05)
        second = asyncio.create_task(collect(relay.send_message(chat_id, OWNER, "second")))
        await asyncio.sleep(0.05)
        # The second turn has not written its message while the first is streaming.
        assert stored_messages(engine, chat_id) == [("user", "first")]
        provider.gate.set()
        return await asyncio.wait_for(asyncio.gather(first, second), timeout=5)

    asyncio.run(scenario())

    assert stored_messages(engine, chat_id) == [
        ("user", "first"),
        ("assistant", "reply"),
        ("user", "second"),
        ("assistant", "reply"),
    ]
    assert [turn.role for turn in provider.calls[1]["history"]] == ["user", "model"]


def test_transcript_builder_maps_assistant_to_model(engine, chat_id):
    with Session(engine) as db:
        store = ConversationStore(db)
        store.add_message(chat_id, "user", "q")
        store.add_message(chat_id, "assistant", "a")
        history = TranscriptBuilder(store).build_history(chat_id, OWNER)
        with pytest.raises(NotFound):
            TranscriptBuilder(store).build_history(chat_id, STRANGER)

    assert history == [TranscriptTurn(role="user", content="q"), TranscriptTurn(role="model", content="a")]


def test_describe_provider_failure():
    assert describe_provider_failure(RuntimeError("billing account required")) == (
        "The model provider rejected the request (quota or billing)",
        "billing_required",
    )
    assert describe_provider_failure(ValueError("boom")) == ("Failed to generate response", "provider_error")


class DeletingProvider(FakeChatProvider):
    """Deletes the chat out from under the turn after its first fragment."""

    def __init__(self, engine, chat_id):
        super().__init__(["partial", " reply"])
        self.engine = engine
        self.chat_id = chat_id

    async def stream_reply(self, history, message, cancellation_token=None):
        self.calls.append({"history": list(history), "message": message})
        yield self.fragments[0]
        with Session(self.engine) as db:
            store = ConversationStore(db)
            store.delete_chat(store.get_owned_chat(self.chat_id, OWNER.id))
        yield self.fragments[1]


def test_reply_for_deleted_chat_is_an_error_and_leaves_no_rows(engine, chat_id):
    relay = make_relay(engine, DeletingProvider(engine, chat_id))

    events = asyncio.run(collect(relay.send_message(chat_id, OWNER, "Hello")))

    assert [e.content for e in events[:-1]] == ["partial", " reply"]
    assert events[-1].error == "The response could not be saved"
    assert events[-1].code == "not_found"
    assert not any(e.done for e in events)
    with Session(engine) as db:
        assert db.exec(select(Message).where(Message.chat_id == chat_id)).all() == []


def test_persist_reply_for_missing_chat_writes_nothing(engine, chat_id):
    relay = make_relay(engine)

    with pytest.raises(NotFound):
        relay.persist_reply(chat_id, STRANGER, "stray reply")

    assert stored_messages(engine, chat_id) == []
