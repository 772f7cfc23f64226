"""Speaker selection: who talks next under each conversation mode.

Every policy is a pure function of the lineup and the message history.
Rotation positions are recomputed from history on each call, so a policy
rebuilt in a new process picks the same speaker as one that never stopped.
"""

import logging
from collections.abc import Callable, Sequence

from roundtable.errors import ConfigurationError
from roundtable.models import Message, Persona

logger = logging.getLogger(__name__)

MAX_TURNS = 20
_RECENT_WINDOW = 3


def _index_of(personas: Sequence[Persona], persona_id: str) -> int:
    """Position of ``persona_id`` in the lineup, or -1 if it left the lineup."""
    return next((i for i, p in enumerate(personas) if p.id == persona_id), -1)


def _following(personas: Sequence[Persona], persona_id: str) -> Persona:
    return personas[(_index_of(personas, persona_id) + 1) % len(personas)]


def _round_robin(personas: Sequence[Persona], history: Sequence[Message]) -> Persona:
    return personas[len(history) % len(personas)]


def _debate(personas: Sequence[Persona], history: Sequence[Message]) -> Persona:
    if not history:
        return personas[0]

    last_id = history[-1].persona_id
    last_index = _index_of(personas, last_id)
    last_position = personas[last_index].position if last_index >= 0 else None

    opponents = [p for p in personas if p.id != last_id and p.position != last_position]
    if opponents:
        return opponents[0]
    # Everyone shares a stance: plain rotation
    return _following(personas, last_id)


def _interview(personas: Sequence[Persona], history: Sequence[Message]) -> Persona:
    interviewer = personas[0]
    if not history or history[-1].persona_id != interviewer.id:
        return interviewer

    interviewees = personas[1:]
    answered = sum(1 for m in history if m.persona_id != interviewer.id)
    return interviewees[answered % len(interviewees)]


def _free(personas: Sequence[Persona], history: Sequence[Message]) -> Persona:
    if not history:
        return personas[0]

    recent = {m.persona_id for m in history[-_RECENT_WINDOW:]}
    quiet = [p for p in personas if p.id not in recent]
    if quiet:
        return quiet[0]
    return _following(personas, history[-1].persona_id)


_POLICIES: dict[str, Callable[[Sequence[Persona], Sequence[Message]], Persona]] = {
    "round-robin": _round_robin,
    "debate": _debate,
    "interview": _interview,
    "free": _free,
}


def validate_lineup(mode: str, personas: Sequence[Persona]) -> None:
    """Raise ConfigurationError if ``mode`` or the lineup cannot run a conversation."""
    if mode not in _POLICIES:
        raise ConfigurationError(f"Unknown conversation mode: {mode!r}")
    if len(personas) < 2:
        raise ConfigurationError(f"A conversation needs at least 2 personas, got {len(personas)}")


def next_speaker(mode: str, personas: Sequence[Persona], history: Sequence[Message]) -> Persona:
    """Return the persona who speaks next.

    Args:
        mode: One of "free", "debate", "interview", "round-robin".
        personas: The conversation lineup, in its fixed order.
        history: Persisted messages, oldest first.

    Raises:
        ConfigurationError: Unknown mode or fewer than 2 personas.
    """
    validate_lineup(mode, personas)
    speaker = _POLICIES[mode](personas, history)
    logger.debug("Mode %s, %d messages so far: next speaker %s", mode, len(history), speaker.name)
    return speaker


def should_continue(history: Sequence[Message]) -> bool:
    """False once the conversation has reached MAX_TURNS messages."""
    return len(history) < MAX_TURNS
