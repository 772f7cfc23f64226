"""Conversation scenario files: markdown topic with YAML front matter.

Example::

    ---
    title: Remote work
    mode: debate
    personas: optimist, skeptic
    ---
    Is fully remote work better for software teams?
"""

from dataclasses import dataclass
from pathlib import Path

import frontmatter

from roundtable.errors import ConfigurationError
from roundtable.models import MODES, Persona


@dataclass
class Scenario:
    title: str
    topic: str
    mode: str
    personas: list[Persona]
    source: str


def parse_file(file_path: Path) -> tuple[str, dict]:
    """Parse a markdown file with optional YAML frontmatter.

    Returns:
        (content, metadata) where content is the body text. If there is no
        frontmatter, metadata is {}.
    """
    post = frontmatter.load(str(file_path))
    return post.content.strip(), dict(post.metadata)


def _persona_ids(raw: object) -> list[str]:
    if isinstance(raw, str):
        return [p.strip() for p in raw.split(",") if p.strip()]
    if isinstance(raw, list):
        return [str(p).strip() for p in raw]
    return []


def load_scenario(file_path: Path, library: dict[str, Persona]) -> Scenario:
    """Read a scenario file and resolve its persona ids against ``library``.

    Raises:
        ConfigurationError: Empty topic, unknown mode or persona, or fewer
            than 2 personas.
    """
    topic, meta = parse_file(file_path)
    if not topic:
        raise ConfigurationError(f"{file_path.name}: no topic in file body")

    mode = str(meta.get("mode", "free"))
    if mode not in MODES:
        raise ConfigurationError(f"{file_path.name}: unknown mode {mode!r}, expected one of {', '.join(MODES)}")

    ids = _persona_ids(meta.get("personas"))
    unknown = [pid for pid in ids if pid not in library]
    if unknown:
        raise ConfigurationError(f"{file_path.name}: unknown personas: {', '.join(unknown)}")
    if len(ids) < 2:
        raise ConfigurationError(f"{file_path.name}: a conversation needs at least 2 personas, got {len(ids)}")

    return Scenario(
        title=str(meta.get("title") or file_path.stem),
        topic=topic,
        mode=mode,
        personas=[library[pid] for pid in ids],
        source=str(file_path),
    )
