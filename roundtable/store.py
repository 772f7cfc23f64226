"""Persistence interface the engine consumes, plus an in-process implementation."""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from roundtable.models import Conversation, Message, Persona

logger = logging.getLogger(__name__)


class ConversationStore(ABC):
    """Storage for conversations, personas and their append-only messages."""

    @abstractmethod
    async def create_message(
        self,
        conversation_id: str,
        persona_id: str,
        persona_name: str,
        model: str,
        content: str,
    ) -> Message:
        ...

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> list[Message]:
        """Return the conversation's messages, oldest first."""
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Raises KeyError if the conversation does not exist."""
        ...

    @abstractmethod
    async def get_persona(self, persona_id: str) -> Persona:
        """Raises KeyError if the persona does not exist."""
        ...


class InMemoryStore(ConversationStore):
    """Dict-backed store for the CLI and tests. Lives as long as the process."""

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._personas: dict[str, Persona] = {}
        self._messages: dict[str, list[Message]] = {}

    def add_persona(self, persona: Persona) -> Persona:
        self._personas[persona.id] = persona
        return persona

    def create_conversation(
        self,
        title: str,
        topic: str,
        mode: str,
        persona_ids: list[str],
        conversation_id: str | None = None,
    ) -> Conversation:
        conversation = Conversation(
            id=conversation_id or uuid.uuid4().hex,
            title=title,
            topic=topic,
            mode=mode,
            persona_ids=list(persona_ids),
            created_at=datetime.now(timezone.utc),
        )
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return conversation

    def set_status(self, conversation_id: str, status: str) -> None:
        self._conversations[conversation_id].status = status

    async def create_message(
        self,
        conversation_id: str,
        persona_id: str,
        persona_name: str,
        model: str,
        content: str,
    ) -> Message:
        if conversation_id not in self._conversations:
            raise KeyError(f"Conversation not found: {conversation_id}")
        message = Message(
            id=uuid.uuid4().hex,
            conversation_id=conversation_id,
            persona_id=persona_id,
            persona_name=persona_name,
            model=model,
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        self._messages[conversation_id].append(message)
        logger.debug("Stored message %s (%d chars) for %s", message.id, len(content), persona_name)
        return message

    async def list_messages(self, conversation_id: str) -> list[Message]:
        # sorted() is stable, so same-timestamp messages keep insertion order
        return sorted(self._messages.get(conversation_id, []), key=lambda m: m.created_at)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        if conversation_id not in self._conversations:
            raise KeyError(f"Conversation not found: {conversation_id}")
        return self._conversations[conversation_id]

    async def get_persona(self, persona_id: str) -> Persona:
        if persona_id not in self._personas:
            raise KeyError(f"Persona not found: {persona_id}")
        return self._personas[persona_id]
