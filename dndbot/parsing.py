"""Parsers for the line-oriented outline and illustration formats.

Outline format (one block per episode):

    ## Episode: 1 - The Drowned Bell
    Summary: ...
    Tagline: ...
    Location: ...
    Characters: Name One, Name Two

Illustration format (one block per prompt):

    ## Illustration: 1 - The Drowned Bell - The Flooded Nave
    Description: ...
    Style: ...
    Type: Map | Scene | Portrait

Both parsers are a single pass over trimmed lines. A block header flushes the
record in progress (when its identifying field is set) and starts a new one;
recognised field prefixes fill fields; everything else is skipped.
"""

from __future__ import annotations

from dndbot.models import Episode, Illustration

EPISODE_MARKER = "## Episode"
ILLUSTRATION_MARKER = "## Illustration"


def _value(line: str, prefix: str) -> str:
    return line[len(prefix):].strip()


def parse_episodes(text: str) -> list[Episode]:
    """Parse outline text into episodes, in source order."""
    episodes: list[Episode] = []
    current: dict | None = None

    def flush() -> None:
        if current and current.get("title"):
            episodes.append(Episode(**current))

    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith(EPISODE_MARKER):
            flush()
            current = {"title": line.removeprefix("## ").strip()}
        elif current is None:
            continue
        elif line.startswith("Summary:"):
            current["summary"] = _value(line, "Summary:")
        elif line.startswith("Tagline:"):
            current["tagline"] = _value(line, "Tagline:")
        elif line.startswith("Location:"):
            current["location"] = _value(line, "Location:")
        elif line.startswith("Characters:"):
            names = _value(line, "Characters:")
            current["characters"] = names.split(", ") if names else []

    flush()
    return episodes


def parse_illustrations(text: str) -> list[Illustration]:
    """Parse illustration prompt text into descriptors, in source order."""
    illustrations: list[Illustration] = []
    current: dict = {}

    def flush() -> None:
        if current.get("description"):
            illustrations.append(Illustration(**current))

    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith(ILLUSTRATION_MARKER):
            flush()
            current = {}
        elif line.startswith("Description:"):
            current["description"] = _value(line, "Description:")
        elif line.startswith("Style:"):
            current["style"] = _value(line, "Style:")
        elif line.startswith("Type:"):
            current["is_map"] = "map" in line.lower()

    flush()
    return illustrations
