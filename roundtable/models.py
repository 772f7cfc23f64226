"""Pure dataclasses for the roundtable conversation core. No logic, no deps."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

MODES = ("free", "debate", "interview", "round-robin")


@dataclass(frozen=True)
class Persona:
    id: str
    name: str
    system_prompt: str
    provider: str          # backend id: "openrouter", "anthropic", "ollama", ...
    model: str             # model id on that backend
    temperature: float = 0.7
    max_tokens: int = 1024
    avatar: str | None = None
    position: str | None = None   # debate stance, e.g. "Pro"


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    persona_id: str
    persona_name: str      # denormalized at write time
    model: str             # "{provider}/{model}"
    content: str
    created_at: datetime


@dataclass
class Conversation:
    id: str
    title: str
    topic: str
    mode: str
    persona_ids: list[str] = field(default_factory=list)
    status: str = "active"        # "active" or "completed"
    created_at: datetime | None = None


@dataclass(frozen=True)
class ChatMessage:
    role: str              # "system", "user", "assistant"
    content: str


@dataclass
class ChatConfig:
    model: str
    messages: list[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 1024


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    provider: str


@dataclass(frozen=True)
class TurnEvent:
    type: str              # "persona", "content", "done", "error"
    data: Any = None

    def as_dict(self) -> dict[str, Any]:
        if self.data is None:
            return {"type": self.type}
        return {"type": self.type, "data": self.data}
