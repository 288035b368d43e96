from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .errors import ConfigError

DEFAULT_TIMEZONE = "Asia/Tokyo"

logger = logging.getLogger(__name__)


def normalize_token(token: str) -> str:
    """Reduce a tag token to the key used for alias lookups.

    Trims, drops one leading ``#``, lowercases and removes every character that is
    not a letter or digit in any script, so ``#Deep-Work`` and ``deepwork`` collide.
    """

    text = token.strip()
    if text.startswith("#"):
        text = text[1:]
    return "".join(ch for ch in text.lower() if ch.isalnum())


@dataclass(frozen=True)
class TagIndex:
    timezone: str
    canonical: tuple[str, ...]
    alias_map: dict[str, str] = field(default_factory=dict)
    display: dict[str, Any] = field(default_factory=dict)

    def lookup(self, token: str) -> str | None:
        key = normalize_token(token)
        if not key:
            return None
        return self.alias_map.get(key)


def build_tag_index(data: dict[str, Any] | None) -> TagIndex:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("tag document must be a mapping")
    tags = data.get("tags") or {}
    if not isinstance(tags, dict):
        raise ConfigError("tags must be a mapping of canonical key to settings")
    timezone = str(data.get("timezone") or DEFAULT_TIMEZONE)
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"unknown timezone: {timezone}") from exc

    canonical = tuple(str(key) for key in tags)
    alias_map: dict[str, str] = {}
    # Canonical keys go in before any alias so a key always resolves to itself.
    for key in canonical:
        normalized = normalize_token(key)
        if normalized and normalized not in alias_map:
            alias_map[normalized] = key
    for key in canonical:
        settings = tags.get(key) or {}
        aliases = settings.get("aliases") if isinstance(settings, dict) else None
        if not isinstance(aliases, list):
            continue
        for alias in aliases:
            normalized = normalize_token(str(alias))
            if not normalized:
                continue
            if normalized in alias_map:
                if alias_map[normalized] != key:
                    logger.debug(
                        "alias shadowed",
                        extra={"alias": alias, "key": key, "owner": alias_map[normalized]},
                    )
                continue
            alias_map[normalized] = key
    return TagIndex(timezone=timezone, canonical=canonical, alias_map=alias_map, display=tags)


def load_tags(path: str | Path = "tags.yaml") -> TagIndex:
    tags_path = Path(path).expanduser()
    try:
        raw = tags_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read tag file {tags_path}: {exc}") from exc
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid tag file {tags_path}: {exc}") from exc
    return build_tag_index(data)


def normalize_tags(raw_tags: Iterable[str], index: TagIndex) -> list[str]:
    normalized: list[str] = []
    for raw in raw_tags:
        match = index.lookup(raw)
        if match and match not in normalized:
            normalized.append(match)
    return normalized
