"""Prompt assembly for one speaker: system prompt, recent history, turn cue."""

from collections.abc import Sequence

from config.config_loader import PromptsConfig
from roundtable.models import ChatMessage, Message, Persona

HISTORY_WINDOW = 10


def build_system_prompt(persona: Persona, prompts: PromptsConfig) -> str:
    prompt = persona.system_prompt
    if persona.position:
        prompt += prompts.position.format(position=persona.position)
    return prompt + prompts.conciseness


def build_prompt(
    speaker: Persona,
    history: Sequence[Message],
    topic: str,
    prompts: PromptsConfig | None = None,
) -> list[ChatMessage]:
    """Build the ordered messages sent to ``speaker``'s backend.

    The speaker's own earlier turns become assistant messages and everyone
    else's become user messages, each prefixed with the author's name so the
    model can tell participants apart.
    """
    prompts = prompts or PromptsConfig()
    messages = [ChatMessage(role="system", content=build_system_prompt(speaker, prompts))]

    for msg in history[-HISTORY_WINDOW:]:
        messages.append(
            ChatMessage(
                role="assistant" if msg.persona_id == speaker.id else "user",
                content=f"{msg.persona_name}: {msg.content}",
            )
        )

    if history:
        cue = prompts.continuation
    else:
        cue = prompts.opening.format(topic=topic)
    messages.append(ChatMessage(role="user", content=cue))
    return messages
