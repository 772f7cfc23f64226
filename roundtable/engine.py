"""Turn orchestration: pick a speaker, stream their reply, persist it once complete."""

import logging
import time
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, aclosing

from config.config_loader import PromptsConfig
from roundtable.credentials import CredentialSource
from roundtable.errors import ConfigurationError
from roundtable.models import ChatConfig, Conversation, Message, Persona, TurnEvent
from roundtable.prompts import build_prompt
from roundtable.providers.base import AIProvider, AuthenticationError, ProtocolError, TransportError
from roundtable.providers.registry import get_provider
from roundtable.store import ConversationStore
from roundtable.turns import next_speaker, should_continue, validate_lineup

logger = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"


class ConversationEngine:
    """Drives one conversation, one turn at a time.

    At most one turn is in flight per engine; starting another while one is
    running is a ConfigurationError. A turn that fails or is cancelled leaves
    no trace in the store.
    """

    def __init__(
        self,
        conversation: Conversation,
        personas: Sequence[Persona],
        store: ConversationStore,
        providers: dict[str, AIProvider],
        credentials: CredentialSource,
        prompts: PromptsConfig | None = None,
    ) -> None:
        validate_lineup(conversation.mode, personas)
        self._conversation = conversation
        self._personas = list(personas)
        self._store = store
        self._providers = providers
        self._credentials = credentials
        self._prompts = prompts or PromptsConfig()
        self._state = IDLE
        self._cancel_requested = False

    @classmethod
    async def load(
        cls,
        conversation_id: str,
        store: ConversationStore,
        providers: dict[str, AIProvider],
        credentials: CredentialSource,
        prompts: PromptsConfig | None = None,
    ) -> "ConversationEngine":
        """Build an engine for a stored conversation and its stored personas."""
        try:
            conversation = await store.get_conversation(conversation_id)
            personas = [await store.get_persona(pid) for pid in conversation.persona_ids]
        except KeyError as exc:
            raise ConfigurationError(str(exc)) from exc
        return cls(conversation, personas, store, providers, credentials, prompts)

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def personas(self) -> list[Persona]:
        return list(self._personas)

    @property
    def state(self) -> str:
        return self._state

    def cancel(self) -> None:
        """Ask the running turn to stop before its next fragment. No-op when idle."""
        if self._state == RUNNING:
            self._cancel_requested = True

    async def history(self) -> list[Message]:
        return await self._store.list_messages(self._conversation.id)

    async def should_continue(self) -> bool:
        return should_continue(await self.history())

    def turn(self) -> AbstractAsyncContextManager[AsyncIterator[TurnEvent]]:
        """``execute_turn()`` as a context manager; leaving the block ends the turn.

        Use this (or ``contextlib.aclosing``) whenever the caller may stop
        iterating early. A bare ``async for`` that breaks out leaves the engine
        running until the abandoned generator is finalized.
        """
        return aclosing(self.execute_turn())

    async def execute_turn(self) -> AsyncIterator[TurnEvent]:
        """Run one turn, yielding its events as they happen.

        Yields a "persona" event, then one "content" event per fragment, then
        "done" once the message is stored, or "error" instead of "done" if the
        stream or the final write fails. A cancelled turn just stops. Callers
        that may stop early should iterate inside ``turn()``.

        Raises:
            ConfigurationError: A turn is already running, or the speaker's
                backend is unknown.
            AuthenticationError: The backend needs a key and has none, or
                rejected the one supplied.
        """
        if self._state == RUNNING:
            raise ConfigurationError(f"A turn is already running for conversation {self._conversation.id}")
        self._state = RUNNING
        self._cancel_requested = False
        conversation = self._conversation

        try:
            history = await self.history()
            speaker = next_speaker(conversation.mode, self._personas, history)
            provider = get_provider(self._providers, speaker.provider)
            api_key = self._credentials.get_credential(speaker.provider)
            if provider.requires_key and not api_key:
                raise AuthenticationError(speaker.provider, "API key required")

            chat_config = ChatConfig(
                model=speaker.model,
                messages=build_prompt(speaker, history, conversation.topic, self._prompts),
                temperature=speaker.temperature,
                max_tokens=speaker.max_tokens,
            )

            logger.info(
                "Turn %d of %s: %s (%s/%s)",
                len(history) + 1, conversation.id, speaker.name, speaker.provider, speaker.model,
            )
            yield TurnEvent(
                "persona",
                {"id": speaker.id, "name": speaker.name, "avatar": speaker.avatar, "model": speaker.model},
            )
            if self._cancel_requested:
                logger.info("Turn cancelled before %s started; nothing saved", speaker.name)
                return

            start = time.monotonic()
            parts: list[str] = []
            stream = provider.chat(chat_config, api_key)
            try:
                async for fragment in stream:
                    parts.append(fragment)
                    yield TurnEvent("content", fragment)
                    if self._cancel_requested:
                        break
            except (ProtocolError, TransportError) as exc:
                logger.warning("Turn failed for %s after %d fragments: %s", speaker.name, len(parts), exc)
                yield TurnEvent("error", str(exc))
                return
            finally:
                await stream.aclose()

            if self._cancel_requested:
                logger.info("Turn cancelled for %s after %d fragments; nothing saved", speaker.name, len(parts))
                return

            content = "".join(parts)
            try:
                await self._store.create_message(
                    conversation.id,
                    speaker.id,
                    speaker.name,
                    f"{speaker.provider}/{speaker.model}",
                    content,
                )
            except Exception as exc:
                # The fragments are already out; only the stored copy is missing
                logger.exception("Failed to save message from %s", speaker.name)
                yield TurnEvent("error", f"Failed to save message: {exc}")
                return

            logger.info(
                "Turn complete for %s: %d fragments, %d chars, %.2fs",
                speaker.name, len(parts), len(content), time.monotonic() - start,
            )
            yield TurnEvent("done")
        finally:
            self._state = IDLE
            self._cancel_requested = False


async def run_conversation(
    engine: ConversationEngine,
    max_turns: int | None = None,
    on_event: Callable[[TurnEvent], None] | None = None,
) -> int:
    """Run turns until the conversation is over, a turn fails, or ``max_turns``.

    Failed turns are not retried. Returns the number of completed turns.
    """
    completed = 0
    while await engine.should_continue():
        if max_turns is not None and completed >= max_turns:
            break
        last_type = None
        async with engine.turn() as events:
            async for event in events:
                last_type = event.type
                if on_event:
                    on_event(event)
        if last_type != "done":
            logger.info("Stopping after %d turns (last event: %s)", completed, last_type)
            break
        completed += 1
    return completed
