"""Shared pytest fixtures."""

from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from config.config_loader import AppConfig, DefaultsConfig, PromptsConfig, ProviderConfig
from roundtable.credentials import StaticCredentials
from roundtable.models import ChatConfig, ChatMessage, Conversation, Message, ModelInfo, Persona
from roundtable.providers.base import AIProvider
from roundtable.store import InMemoryStore

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_persona(persona_id: str, position: str | None = None, provider: str = "mock") -> Persona:
    return Persona(
        id=persona_id,
        name=persona_id.upper(),
        system_prompt=f"You are {persona_id}.",
        provider=provider,
        model="mock-model",
        position=position,
    )


def make_history(*persona_ids: str, conversation_id: str = "conv") -> list[Message]:
    """Synthetic history: one message per id, in order, one second apart."""
    return [
        Message(
            id=f"m{i}",
            conversation_id=conversation_id,
            persona_id=pid,
            persona_name=pid.upper(),
            model="mock/mock-model",
            content=f"message {i} from {pid}",
            created_at=_EPOCH + timedelta(seconds=i),
        )
        for i, pid in enumerate(persona_ids)
    ]


class MockProvider(AIProvider):
    """Test double AIProvider streaming a scripted list of fragments."""

    def __init__(
        self,
        provider_name: str = "mock",
        fragments: list[str] | None = None,
        error: Exception | None = None,
        requires_key: bool = False,
    ) -> None:
        # No HTTP client: nothing here touches the network
        self.name = provider_name
        self.requires_key = requires_key
        self.fragments = ["Hello", ", ", "world"] if fragments is None else list(fragments)
        self.error = error
        self.calls: list[tuple[ChatConfig, str | None]] = []
        self.fragments_sent = 0
        self.streams_closed = 0

    async def validate_key(self, key: str) -> bool:
        return True

    async def fetch_models(self, key: str | None = None) -> list[ModelInfo]:
        return [ModelInfo(id="mock-model", name="Mock Model", provider=self.name)]

    async def chat(self, config: ChatConfig, api_key: str | None = None) -> AsyncIterator[str]:
        self.calls.append((config, api_key))
        try:
            for fragment in self.fragments:
                self.fragments_sent += 1
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.streams_closed += 1

    async def close(self) -> None:
        pass


def mock_client(
    handler: Callable[[httpx.Request], httpx.Response],
    base_url: str = "https://backend.test/v1",
) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))


def streaming_response(chunks: list[bytes], status_code: int = 200) -> httpx.Response:
    """A response whose body arrives in exactly the given byte chunks."""

    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk

    return httpx.Response(status_code, content=body())


@pytest.fixture
def personas() -> list[Persona]:
    return [make_persona("a"), make_persona("b"), make_persona("c")]


@pytest.fixture
def sample_chat_config() -> ChatConfig:
    return ChatConfig(
        model="test-model",
        messages=[
            ChatMessage(role="system", content="You are terse."),
            ChatMessage(role="user", content="BOB: Hello"),
            ChatMessage(role="assistant", content="ALICE: Hi"),
            ChatMessage(role="user", content="It's your turn to respond. Continue the discussion."),
        ],
        temperature=0.9,
        max_tokens=256,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def credentials() -> StaticCredentials:
    return StaticCredentials({"mock": "sk-test"})


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def conversation(store: InMemoryStore, personas: list[Persona]) -> Conversation:
    for persona in personas:
        store.add_persona(persona)
    return store.create_conversation(
        title="Tabs or spaces",
        topic="Tabs or spaces?",
        mode="round-robin",
        persona_ids=[p.id for p in personas],
        conversation_id="conv",
    )


@pytest.fixture
def sample_app_config(tmp_path) -> AppConfig:
    return AppConfig(
        defaults=DefaultsConfig(output_dir=tmp_path / "output"),
        providers={"ollama": ProviderConfig(name="ollama", base_url="http://localhost:11434")},
        personas={"a": make_persona("a"), "b": make_persona("b")},
        prompts=PromptsConfig(),
        available_providers={"ollama"},
    )
