"""Rich console rendering of turn events and run stats, and transcript export to markdown/JSON."""

import dataclasses
import json
import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from roundtable.models import Conversation, Message, TurnEvent
from roundtable.stats import ConversationStats, conversation_stats, format_duration

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

EXPORT_FORMATS = ("markdown", "json")


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _timestamp(value: datetime | None) -> str:
    return value.isoformat() if value else "unknown"


def print_event(event: TurnEvent) -> None:
    """Render one turn event as it arrives: header, streamed text, then a status line."""
    if event.type == "persona":
        persona = event.data
        label = escape(f"{persona['avatar']} {persona['name']}" if persona.get("avatar") else persona["name"])
        console.print(Rule(f"[bold cyan]{label}[/bold cyan] [dim]({escape(persona['model'])})[/dim]"))
    elif event.type == "content":
        console.print(Text(event.data), end="")
    elif event.type == "done":
        console.print()
    elif event.type == "error":
        console.print()
        console.print(f"[bold red]Error:[/bold red] {escape(str(event.data))}", highlight=False)


def print_stats(stats: ConversationStats | None) -> None:
    """Print the end-of-run summary: totals, then one row per persona."""
    if stats is None:
        console.print("[dim]No messages yet.[/dim]")
        return

    totals = Table(title="Conversation Stats", show_header=False)
    totals.add_column("Metric")
    totals.add_column("Value", justify="right")
    totals.add_row("Messages", f"{stats.total_messages:,}")
    totals.add_row("Words", f"{stats.total_words:,}")
    totals.add_row("Est. tokens", f"~{stats.est_tokens:,}")
    totals.add_row("Duration", format_duration(stats.duration))
    console.print(totals)

    speakers = Table(title="Per Persona")
    speakers.add_column("Persona")
    speakers.add_column("Messages", justify="right")
    speakers.add_column("Avg words", justify="right")
    for persona in stats.personas:
        speakers.add_row(escape(persona.name), str(persona.messages), str(persona.average_words))
    console.print(speakers)

    if stats.top_words:
        top = ", ".join(f"{word} ({count})" for word, count in stats.top_words)
        console.print(f"[bold]Top words:[/bold] {escape(top)}", highlight=False)


def _markdown_stats(stats: ConversationStats) -> list[str]:
    lines = [
        "",
        "## Stats",
        "",
        f"- **Words:** {stats.total_words:,} (~{stats.est_tokens:,} tokens)",
        f"- **Duration:** {format_duration(stats.duration)}",
    ]
    for persona in stats.personas:
        lines.append(f"- **{persona.name}:** {persona.messages} messages, {persona.average_words} words on average")
    if stats.top_words:
        lines.append("- **Top words:** " + ", ".join(f"{word} ({count})" for word, count in stats.top_words))
    return lines


def render_markdown(conversation: Conversation, messages: list[Message]) -> str:
    lines: list[str] = [
        f"# {conversation.title}",
        "",
        f"**Topic:** {conversation.topic}  ",
        f"**Mode:** {conversation.mode}  ",
        f"**Created:** {_timestamp(conversation.created_at)}  ",
        f"**Messages:** {len(messages)}",
        "",
        "---",
    ]
    for msg in messages:
        lines += [
            "",
            f"### {msg.persona_name} ({msg.model})",
            f"*{_timestamp(msg.created_at)}*",
            "",
            msg.content,
            "",
            "---",
        ]
    stats = conversation_stats(messages)
    if stats is not None:
        lines += _markdown_stats(stats)
    return "\n".join(lines)


def render_json(conversation: Conversation, messages: list[Message]) -> str:
    data = dataclasses.asdict(conversation)
    data["messages"] = [dataclasses.asdict(m) for m in messages]
    stats = conversation_stats(messages)
    data["stats"] = stats.as_dict() if stats is not None else None
    return json.dumps(data, indent=2, default=str, ensure_ascii=False)


def save_to_file(
    conversation: Conversation,
    messages: list[Message],
    output_dir: Path,
    fmt: str = "markdown",
    slug_override: str | None = None,
) -> Path:
    """Save the conversation transcript.

    Args:
        conversation: The conversation being exported.
        messages: Its messages, oldest first.
        output_dir: Directory to save the file in (created if missing).
        fmt: "markdown" or "json".
        slug_override: Filename stem to use instead of a slug of the title.

    Returns:
        Path to the saved file.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format: {fmt!r}")

    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(conversation.title)
    suffix = "md" if fmt == "markdown" else "json"
    filepath = output_dir / f"{timestamp}_{slug}.{suffix}"

    body = render_markdown(conversation, messages) if fmt == "markdown" else render_json(conversation, messages)
    filepath.write_text(body, encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
