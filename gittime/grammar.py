from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

TIME_MARKER_RE = re.compile(r"^time:\s*", re.IGNORECASE)
DURATION_RE = re.compile(
    r"^(\d+(?:\.\d+)?)(h|hr|hour|hours|m|min|mins|minute|minutes)$", re.IGNORECASE | re.ASCII
)
HOUR_UNITS = {"h", "hr", "hour", "hours"}

MISSING_DATE_OR_DURATION = "missing date or duration"


@dataclass(frozen=True, slots=True)
class ParsedLine:
    date_token: str
    duration_token: str
    tags: list[str] = field(default_factory=list)
    tag_meta: dict[str, list[str]] = field(default_factory=dict)
    note: str = ""

    def to_raw(self) -> dict[str, object]:
        return {
            "date_token": self.date_token,
            "duration_token": self.duration_token,
            "tags": list(self.tags),
            "tag_meta": {name: list(parts) for name, parts in self.tag_meta.items()},
            "note": self.note,
        }


@dataclass(frozen=True, slots=True)
class LineError:
    reason: str


def parse_time_line(line: str) -> ParsedLine | LineError | None:
    """Parse one commit-message line.

    Returns ``None`` when the line is not a ``time:`` line at all, a ``LineError`` when
    it is one but lacks a date or duration, and a ``ParsedLine`` otherwise.
    """

    trimmed = line.strip()
    marker = TIME_MARKER_RE.match(trimmed)
    if marker is None:
        return None
    tokens = trimmed[marker.end() :].split()
    if len(tokens) < 2:
        return LineError(MISSING_DATE_OR_DURATION)

    date_token = tokens[0].lower()
    duration_token = tokens[1]
    tags: list[str] = []
    tag_meta: dict[str, list[str]] = {}
    note_parts: list[str] = []
    current: str | None = None
    for token in tokens[2:]:
        if token.startswith("#"):
            name, _, inline = token[1:].partition(":")
            if not name:
                current = None
                continue
            tags.append(name)
            meta = tag_meta.setdefault(name, [])
            if inline:
                meta.append(inline)
            current = name
        elif current is not None:
            tag_meta[current].append(token)
        else:
            note_parts.append(token)

    return ParsedLine(
        date_token=date_token,
        duration_token=duration_token,
        tags=tags,
        tag_meta=tag_meta,
        note=" ".join(note_parts),
    )


def parse_duration(token: str | None) -> float | None:
    if not token:
        return None
    match = DURATION_RE.match(token)
    if match is None:
        return None
    value = float(match.group(1))
    if not math.isfinite(value):
        return None
    unit = match.group(2).lower()
    return value if unit in HOUR_UNITS else value / 60
