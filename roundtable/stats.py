"""Summary statistics for a finished conversation: volume, pacing, speakers, vocabulary."""

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta

from roundtable.models import Message

TOKENS_PER_WORD = 1.3
TOP_WORDS = 10

STOP_WORDS = frozenset("""
    the a an is are was were be been being have has had do does did will would could
    should may might shall can to of in for on with at by from as into through during
    before after above below between and but or nor not so yet both either neither each
    every all any few more most other some such no only own same than too very just because
    about that this these those it its i me my we our you your he him his she her
    they them their what which who whom how when where why
""".split())

_NON_WORD = re.compile(r"[^a-z0-9\s]")


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def words(content: str) -> list[str]:
    """Lowercased words with punctuation and non-ASCII letters stripped."""
    return _NON_WORD.sub("", content.lower()).split()


def format_duration(duration: timedelta) -> str:
    """Hours and minutes once the span reaches an hour, else minutes and seconds."""
    total = int(duration.total_seconds())
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {seconds}s"


@dataclass
class PersonaStats:
    persona_id: str
    name: str
    messages: int = 0
    words: int = 0

    @property
    def average_words(self) -> int:
        return _round_half_up(self.words / self.messages) if self.messages else 0


@dataclass
class ConversationStats:
    total_messages: int
    total_words: int
    est_tokens: int
    duration: timedelta
    personas: list[PersonaStats] = field(default_factory=list)   # first-appearance order
    top_words: list[tuple[str, int]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "total_messages": self.total_messages,
            "total_words": self.total_words,
            "est_tokens": self.est_tokens,
            "duration_sec": int(self.duration.total_seconds()),
            "personas": [
                {
                    "persona_id": p.persona_id,
                    "name": p.name,
                    "messages": p.messages,
                    "average_words": p.average_words,
                }
                for p in self.personas
            ],
            "top_words": [[word, count] for word, count in self.top_words],
        }


def conversation_stats(messages: list[Message]) -> ConversationStats | None:
    """Compute stats over a transcript, or None when it has no messages.

    The token figure is an estimate (words times 1.3), not a tokenizer count.
    Top words skip single characters and common English stop words; ties keep
    the order in which the words first appeared.
    """
    if not messages:
        return None

    per_persona: dict[str, PersonaStats] = {}
    vocabulary: Counter[str] = Counter()
    total_words = 0
    for msg in messages:
        msg_words = words(msg.content)
        total_words += len(msg_words)
        # Name as first written, even if a later message carries another
        persona = per_persona.setdefault(msg.persona_id, PersonaStats(msg.persona_id, msg.persona_name))
        persona.messages += 1
        persona.words += len(msg_words)
        vocabulary.update(w for w in msg_words if len(w) > 1 and w not in STOP_WORDS)

    timestamps = [msg.created_at for msg in messages]
    return ConversationStats(
        total_messages=len(messages),
        total_words=total_words,
        est_tokens=_round_half_up(total_words * TOKENS_PER_WORD),
        duration=max(timestamps) - min(timestamps),
        personas=list(per_persona.values()),
        top_words=vocabulary.most_common(TOP_WORDS),
    )
