from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import StorageError

ERRORS_FILENAME = "_errors.json"
STATE_FILENAME = "_state.json"
SUGGESTIONS_VERSION = 1

logger = logging.getLogger(__name__)


def _atomic_write_text(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise StorageError(f"failed to write {path}: {exc}") from exc


def write_json(path: Path, data: Any) -> None:
    _atomic_write_text(path, json.dumps(data, ensure_ascii=False, indent=2) + "\n")


def read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StorageError(f"failed to read {path}: {exc}") from exc
    if not raw.strip():
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageError(f"invalid json in {path}: {exc}") from exc


class DayStore:
    """Per-date entry documents, ``<data_dir>/<YYYY-MM-DD>.json``.

    Documents are read once per run and written through on every append, so an entry
    added for a date is visible to the next line that targets the same date.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir).expanduser()
        self._docs: dict[str, dict[str, Any]] = {}

    def path_for(self, date: str) -> Path:
        return self.data_dir / f"{date}.json"

    def load(self, date: str, timezone: str) -> dict[str, Any]:
        doc = self._docs.get(date)
        if doc is not None:
            return doc
        doc = read_json(self.path_for(date), None)
        if doc is None:
            doc = {"date": date, "timezone": timezone, "entries": []}
        if not isinstance(doc, dict) or not isinstance(doc.get("entries"), list):
            raise StorageError(f"malformed day document {self.path_for(date)}")
        self._docs[date] = doc
        return doc

    def has_entry(self, date: str, timezone: str, entry_id: str) -> bool:
        doc = self.load(date, timezone)
        return any(entry.get("id") == entry_id for entry in doc["entries"])

    def append(self, date: str, timezone: str, entry: dict[str, Any]) -> bool:
        """Write ``entry`` unless its id is already stored for ``date``."""

        if self.has_entry(date, timezone, entry["id"]):
            return False
        doc = self.load(date, timezone)
        doc["entries"].append(entry)
        write_json(self.path_for(date), doc)
        return True

    def dates(self) -> list[str]:
        if not self.data_dir.is_dir():
            return []
        return sorted(
            path.stem
            for path in self.data_dir.glob("*.json")
            if not path.name.startswith("_")
        )


class ErrorLog:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._entries: list[dict[str, Any]] | None = None

    @property
    def entries(self) -> list[dict[str, Any]]:
        if self._entries is None:
            data = read_json(self.path, [])
            if not isinstance(data, list):
                raise StorageError(f"error log {self.path} must be a list")
            self._entries = data
        return self._entries

    def record(self, *, entry_id: str, commit: str, line: str, reason: str) -> bool:
        for existing in self.entries:
            if existing.get("id") == entry_id and existing.get("reason") == reason:
                return False
        self.entries.append({"id": entry_id, "commit": commit, "line": line, "reason": reason})
        return True

    def save(self) -> None:
        write_json(self.path, self.entries)


@dataclass
class Watermark:
    last_processed: str | None = None
    recent_commits: list[str] = field(default_factory=list)


class WatermarkStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> Watermark:
        data = read_json(self.path, {})
        if not isinstance(data, dict):
            raise StorageError(f"state file {self.path} must be an object")
        last = data.get("last_processed")
        recent = data.get("recent_commits")
        return Watermark(
            last_processed=str(last) if last else None,
            recent_commits=[str(sha) for sha in recent] if isinstance(recent, list) else [],
        )

    def save(self, watermark: Watermark) -> None:
        write_json(
            self.path,
            {
                "last_processed": watermark.last_processed,
                "recent_commits": list(watermark.recent_commits),
            },
        )


class NormalizationCache:
    """Sanitized classifier results keyed by the exact (raw tags, note) pair."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._data: dict[str, Any] | None = None

    @staticmethod
    def key_for(raw_tags: Iterable[str], note: str) -> str:
        return json.dumps(
            {"rawTags": list(raw_tags), "note": note},
            ensure_ascii=False,
            separators=(",", ":"),
        )

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            try:
                data = read_json(self.path, {})
            except StorageError as exc:
                # Entries can be re-derived from the classifier, so start over.
                logger.warning("normalize cache unreadable, starting empty", exc_info=exc)
                data = {}
            self._data = data if isinstance(data, dict) else {}
        return self._data

    def get(self, key: str) -> dict[str, Any] | None:
        value = self._load().get(key)
        return value if isinstance(value, dict) else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        self._load()[key] = value
        write_json(self.path, self._load())


class SuggestionLedger:
    """Alias suggestions harvested from the classifier, awaiting manual review."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> dict[str, list[str]]:
        if not self.path.exists():
            return {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise StorageError(f"failed to read suggestions {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            return {}
        suggestions = data.get("suggestions")
        if not isinstance(suggestions, dict):
            return {}
        return {
            str(key): [str(v) for v in values]
            for key, values in suggestions.items()
            if isinstance(values, list)
        }

    def merge(self, new_suggestions: Any) -> int:
        """Union ``new_suggestions`` into the ledger and persist it.

        Returns the number of aliases that were not already recorded.
        """

        suggestions = self.load()
        added = 0
        if isinstance(new_suggestions, dict):
            for key, values in new_suggestions.items():
                if not isinstance(values, list):
                    continue
                bucket = suggestions.setdefault(str(key), [])
                for value in values:
                    if not isinstance(value, str) or not value.strip():
                        continue
                    alias = value.strip()
                    if alias not in bucket:
                        bucket.append(alias)
                        added += 1
        document = {"version": SUGGESTIONS_VERSION, "suggestions": suggestions}
        _atomic_write_text(
            self.path, yaml.safe_dump(document, allow_unicode=True, sort_keys=False)
        )
        return added
