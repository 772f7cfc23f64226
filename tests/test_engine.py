"""Tests for roundtable/engine.py: the turn lifecycle and the conversation loop."""

import asyncio

import httpx
import pytest

from config.config_loader import ProviderConfig
from roundtable.credentials import StaticCredentials
from roundtable.engine import IDLE, RUNNING, ConversationEngine, run_conversation
from roundtable.errors import ConfigurationError
from roundtable.providers.base import AuthenticationError, ProtocolError, TransportError
from roundtable.providers.openai_compat import OpenAIProvider
from roundtable.store import InMemoryStore
from roundtable.turns import MAX_TURNS
from tests.conftest import MockProvider, make_persona, mock_client


def _engine(conversation, personas, store, provider, credentials=None) -> ConversationEngine:
    return ConversationEngine(
        conversation,
        personas,
        store,
        {provider.name: provider},
        credentials or StaticCredentials({"mock": "sk-test"}),
    )


async def _events(engine: ConversationEngine) -> list[tuple[str, object]]:
    return [(e.type, e.data) async for e in engine.execute_turn()]


async def test_successful_turn_event_order(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)
    events = await _events(engine)

    assert events[0] == ("persona", {"id": "a", "name": "A", "avatar": None, "model": "mock-model"})
    assert events[1:-1] == [("content", "Hello"), ("content", ", "), ("content", "world")]
    assert events[-1] == ("done", None)


async def test_successful_turn_persists_exactly_one_message(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)
    await _events(engine)

    messages = await store.list_messages("conv")
    assert len(messages) == 1
    message = messages[0]
    assert message.content == "Hello, world"
    assert message.persona_id == "a"
    assert message.persona_name == "A"
    assert message.model == "mock/mock-model"
    assert message.conversation_id == "conv"


async def test_turn_sends_built_prompt_and_key(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)
    await _events(engine)

    config, api_key = mock_provider.calls[0]
    assert api_key == "sk-test"
    assert config.model == "mock-model"
    assert config.temperature == 0.7
    assert config.max_tokens == 1024
    assert config.messages[0].role == "system"
    assert config.messages[-1].content.startswith('You are discussing: "Tabs or spaces?"')


async def test_successive_turns_follow_mode(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)
    for _ in range(4):
        await _events(engine)
    messages = await store.list_messages("conv")
    assert [m.persona_id for m in messages] == ["a", "b", "c", "a"]


async def test_empty_response_is_still_saved(conversation, personas, store):
    provider = MockProvider(fragments=[])
    engine = _engine(conversation, personas, store, provider)
    events = await _events(engine)

    assert [t for t, _ in events] == ["persona", "done"]
    assert (await store.list_messages("conv"))[0].content == ""


@pytest.mark.parametrize(
    "error",
    [ProtocolError("mock", "HTTP 500: boom"), TransportError("mock", "Connection failed: reset")],
)
async def test_stream_failure_yields_error_and_saves_nothing(conversation, personas, store, error):
    provider = MockProvider(fragments=["partial"], error=error)
    engine = _engine(conversation, personas, store, provider)
    events = await _events(engine)

    assert [t for t, _ in events] == ["persona", "content", "error"]
    assert events[-1][1] == str(error)
    assert await store.list_messages("conv") == []
    assert engine.state == IDLE
    assert provider.streams_closed == 1


async def test_rejected_key_mid_turn_propagates(conversation, personas, store):
    provider = MockProvider(fragments=[], error=AuthenticationError("mock", "HTTP 401: bad key"))
    engine = _engine(conversation, personas, store, provider)

    with pytest.raises(AuthenticationError):
        await _events(engine)
    assert await store.list_messages("conv") == []
    assert engine.state == IDLE


async def test_missing_key_raises_before_any_event(conversation, personas, store):
    provider = MockProvider(requires_key=True)
    engine = _engine(conversation, personas, store, provider, credentials=StaticCredentials({}))

    received = []
    with pytest.raises(AuthenticationError, match="API key required"):
        async for event in engine.execute_turn():
            received.append(event)
    assert received == []
    assert provider.calls == []


async def test_local_backend_runs_without_key(conversation, personas, store):
    provider = MockProvider(requires_key=False)
    engine = _engine(conversation, personas, store, provider, credentials=StaticCredentials({}))
    events = await _events(engine)
    assert events[-1] == ("done", None)
    assert provider.calls[0][1] is None


async def test_unknown_backend_is_configuration_error(store):
    lineup = [make_persona("a", provider="nowhere"), make_persona("b", provider="nowhere")]
    for persona in lineup:
        store.add_persona(persona)
    conversation = store.create_conversation("t", "topic", "free", ["a", "b"])
    engine = _engine(conversation, lineup, store, MockProvider())

    with pytest.raises(ConfigurationError, match="Unknown provider"):
        await _events(engine)
    assert engine.state == IDLE


async def test_cancel_after_two_fragments_saves_nothing(conversation, personas, store):
    provider = MockProvider(fragments=["one", "two", "three", "four", "five"])
    engine = _engine(conversation, personas, store, provider)

    received = []
    async for event in engine.execute_turn():
        received.append(event.type)
        if received.count("content") == 2:
            engine.cancel()

    assert received == ["persona", "content", "content"]
    assert provider.fragments_sent == 2
    assert provider.streams_closed == 1
    assert await store.list_messages("conv") == []
    assert engine.state == IDLE


async def test_cancel_before_stream_starts(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)

    received = []
    async for event in engine.execute_turn():
        received.append(event.type)
        engine.cancel()

    assert received == ["persona"]
    assert mock_provider.calls == []
    assert await store.list_messages("conv") == []


async def test_closing_the_event_stream_cancels(conversation, personas, store):
    provider = MockProvider(fragments=["one", "two", "three"])
    engine = _engine(conversation, personas, store, provider)

    events = engine.execute_turn()
    assert (await events.__anext__()).type == "persona"
    assert (await events.__anext__()).data == "one"
    await events.aclose()

    assert provider.streams_closed == 1
    assert await store.list_messages("conv") == []
    assert engine.state == IDLE


async def test_breaking_out_of_turn_block_frees_engine(conversation, personas, store):
    provider = MockProvider(fragments=["one", "two", "three"])
    engine = _engine(conversation, personas, store, provider)

    async with engine.turn() as events:
        async for event in events:
            if event.type == "content":
                break

    assert engine.state == IDLE
    assert provider.streams_closed == 1
    assert await store.list_messages("conv") == []
    # The engine accepts the next turn straight away
    assert [e.type async for e in engine.execute_turn()][-1] == "done"


async def test_cancel_when_idle_is_noop(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)
    engine.cancel()
    events = await _events(engine)
    assert events[-1] == ("done", None)


async def test_second_turn_while_running_is_rejected(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)

    first = engine.execute_turn()
    await first.__anext__()
    assert engine.state == RUNNING

    second = engine.execute_turn()
    with pytest.raises(ConfigurationError, match="already running"):
        await second.__anext__()

    # The first turn is unaffected
    rest = [e.type async for e in first]
    assert rest[-1] == "done"
    assert len(await store.list_messages("conv")) == 1
    assert engine.state == IDLE


class FailingStore(InMemoryStore):
    async def create_message(self, *args, **kwargs):
        raise RuntimeError("disk full")


async def test_persistence_failure_yields_error(personas, mock_provider):
    store = FailingStore()
    for persona in personas:
        store.add_persona(persona)
    conversation = store.create_conversation("t", "topic", "round-robin", ["a", "b", "c"])
    engine = _engine(conversation, personas, store, mock_provider)
    events = await _events(engine)

    assert [t for t, _ in events] == ["persona", "content", "content", "content", "error"]
    assert events[-1][1] == "Failed to save message: disk full"
    assert engine.state == IDLE


def test_invalid_lineup_rejected_at_construction(store, mock_provider):
    conversation = store.create_conversation("t", "topic", "free", ["solo"])
    with pytest.raises(ConfigurationError):
        _engine(conversation, [make_persona("solo")], store, mock_provider)

    conversation = store.create_conversation("t", "topic", "panel", ["a", "b"])
    with pytest.raises(ConfigurationError, match="Unknown conversation mode"):
        _engine(conversation, [make_persona("a"), make_persona("b")], store, mock_provider)


async def test_load_from_store(conversation, store, mock_provider, credentials):
    engine = await ConversationEngine.load("conv", store, {"mock": mock_provider}, credentials)
    assert engine.conversation is conversation
    assert [p.id for p in engine.personas] == ["a", "b", "c"]


async def test_load_missing_conversation(store, mock_provider, credentials):
    with pytest.raises(ConfigurationError, match="Conversation not found"):
        await ConversationEngine.load("missing", store, {"mock": mock_provider}, credentials)


async def test_load_missing_persona(store, mock_provider, credentials):
    store.add_persona(make_persona("a"))
    store.create_conversation("t", "topic", "free", ["a", "ghost"], conversation_id="c1")
    with pytest.raises(ConfigurationError, match="Persona not found"):
        await ConversationEngine.load("c1", store, {"mock": mock_provider}, credentials)


async def test_independent_conversations_run_concurrently(personas, store):
    for persona in personas:
        store.add_persona(persona)
    first = store.create_conversation("one", "topic one", "round-robin", ["a", "b"], conversation_id="one")
    second = store.create_conversation("two", "topic two", "round-robin", ["b", "c"], conversation_id="two")
    provider = MockProvider()
    engine_one = _engine(first, personas[:2], store, provider)
    engine_two = _engine(second, personas[1:], store, provider)

    await asyncio.gather(_events(engine_one), _events(engine_two))

    assert [m.persona_id for m in await store.list_messages("one")] == ["a"]
    assert [m.persona_id for m in await store.list_messages("two")] == ["b"]


# --- run_conversation ---

async def test_run_conversation_respects_max_turns(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)
    seen = []
    completed = await run_conversation(engine, max_turns=3, on_event=seen.append)

    assert completed == 3
    assert len(await store.list_messages("conv")) == 3
    assert [e.type for e in seen].count("done") == 3


async def test_run_conversation_stops_at_turn_cap(conversation, personas, store, mock_provider):
    engine = _engine(conversation, personas, store, mock_provider)
    completed = await run_conversation(engine)

    assert completed == MAX_TURNS
    assert len(await store.list_messages("conv")) == MAX_TURNS
    assert await engine.should_continue() is False


async def test_run_conversation_stops_on_failed_turn(conversation, personas, store):
    provider = MockProvider(error=ProtocolError("mock", "HTTP 503: unavailable"))
    engine = _engine(conversation, personas, store, provider)
    completed = await run_conversation(engine, max_turns=5)

    assert completed == 0
    assert len(provider.calls) == 1
    assert await store.list_messages("conv") == []


async def test_undecodable_stream_ends_turn_with_error(store):
    lineup = [make_persona("a", provider="openai"), make_persona("b", provider="openai")]
    for persona in lineup:
        store.add_persona(persona)
    conversation = store.create_conversation("t", "topic", "round-robin", ["a", "b"])
    client = mock_client(
        lambda request: httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip at all")
    )
    provider = OpenAIProvider(ProviderConfig("openai", "https://backend.test/v1"), client=client)
    engine = _engine(conversation, lineup, store, provider, credentials=StaticCredentials({"openai": "sk-test"}))

    events = await _events(engine)

    assert [t for t, _ in events] == ["persona", "error"]
    assert "Invalid response" in events[-1][1]
    assert await store.list_messages(conversation.id) == []
    assert engine.state == IDLE
