"""Parser for "{artworkId}-meta.txt" sidecar files.

Two layouts show up in real libraries and both are accepted:

Inline layout:
    ID: 98765
    Title: Sunset
    Tags: #landscape #sky

Block layout (key on its own line, value lines until a blank line):
    ID
    98765

    Description
    First line
    second line

Keys are case-insensitive, unknown keys are ignored. Values may continue on the
following lines until a blank line or the next known key.
"""

import re
from dataclasses import dataclass, field

from artshelf.domain.exceptions import SidecarParseError

KNOWN_KEYS = frozenset(
    {"id", "user", "userid", "title", "description", "tags", "url", "date"}
)

# "Key: value" where Key is a single word
INLINE_FIELD_PATTERN = re.compile(r"^(?P<key>[A-Za-z]+)\s*[:：]\s*(?P<value>.*)$")
# Tags are separated by whitespace or commas
TAG_SPLIT_PATTERN = re.compile(r"[\s,]+")
NUMERIC_ID_PATTERN = re.compile(r"^\d+$")


@dataclass
class SidecarMetadata:
    """Fields extracted from a sidecar file. Everything is optional."""

    external_id: str | None = None
    user: str | None = None
    user_id: str | None = None
    title: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    url: str | None = None
    date: str | None = None


def parse_tags(value: str) -> list[str]:
    """Split a tag list and strip leading '#'. Order is kept, duplicates dropped."""
    tags: list[str] = []
    for raw in TAG_SPLIT_PATTERN.split(value):
        tag = raw.strip().lstrip("#").strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _match_key(line: str) -> tuple[str, str] | None:
    """Return (key, inline value) if the line starts a known field."""
    stripped = line.strip()
    bare = stripped.rstrip(":：").strip().lower()
    if bare in KNOWN_KEYS and " " not in bare:
        return bare, ""
    match = INLINE_FIELD_PATTERN.match(stripped)
    if match and match.group("key").lower() in KNOWN_KEYS:
        return match.group("key").lower(), match.group("value").strip()
    return None


def parse_sidecar(text: str, source: str = "<sidecar>") -> SidecarMetadata:
    """Parse sidecar text into SidecarMetadata.

    Args:
        text: File contents
        source: Path used in error messages

    Raises:
        SidecarParseError: No known field found, or a malformed ID
    """
    fields: dict[str, list[str]] = {}
    current: str | None = None

    for line in text.splitlines():
        if not line.strip():
            current = None
            continue
        keyed = _match_key(line)
        if keyed is not None:
            current, value = keyed
            fields[current] = [value] if value else []
            continue
        if current is not None:
            fields[current].append(line.strip())

    if not fields:
        raise SidecarParseError(source, "no known fields")

    def _text(key: str) -> str | None:
        lines = fields.get(key)
        if not lines:
            return None
        value = "\n".join(lines).strip()
        return value or None

    external_id = _text("id")
    if external_id is not None and not NUMERIC_ID_PATTERN.match(external_id):
        raise SidecarParseError(source, f"ID must be numeric, got {external_id!r}")

    return SidecarMetadata(
        external_id=external_id,
        user=_text("user"),
        user_id=_text("userid"),
        title=_text("title"),
        description=_text("description"),
        tags=parse_tags(" ".join(fields.get("tags", []))),
        url=_text("url"),
        date=_text("date"),
    )
