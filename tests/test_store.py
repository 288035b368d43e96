import json
from pathlib import Path

import pytest
import yaml

from gittime.errors import StorageError
from gittime.store import (
    DayStore,
    ErrorLog,
    NormalizationCache,
    SuggestionLedger,
    Watermark,
    WatermarkStore,
    read_json,
    write_json,
)


def _entry(entry_id: str) -> dict:
    return {"id": entry_id, "hours": 1.0}


def test_write_json_is_atomic_and_leaves_no_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "doc.json"
    write_json(path, {"a": "é"})
    assert path.read_text(encoding="utf-8") == '{\n  "a": "é"\n}\n'
    assert [p.name for p in path.parent.iterdir()] == ["doc.json"]


def test_read_json_raises_storage_error_on_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    path.write_text("{broken")
    with pytest.raises(StorageError, match="invalid json"):
        read_json(path, {})


def test_day_store_creates_document_on_first_append(tmp_path: Path) -> None:
    store = DayStore(tmp_path)
    assert store.append("2026-03-01", "UTC", _entry("sha:a:0")) is True
    doc = json.loads((tmp_path / "2026-03-01.json").read_text())
    assert doc == {"date": "2026-03-01", "timezone": "UTC", "entries": [_entry("sha:a:0")]}


def test_day_store_is_write_once_per_id(tmp_path: Path) -> None:
    store = DayStore(tmp_path)
    store.append("2026-03-01", "UTC", _entry("sha:a:0"))
    assert store.append("2026-03-01", "UTC", {"id": "sha:a:0", "hours": 9.0}) is False

    reopened = DayStore(tmp_path)
    assert reopened.has_entry("2026-03-01", "UTC", "sha:a:0")
    doc = reopened.load("2026-03-01", "UTC")
    assert doc["entries"] == [_entry("sha:a:0")]


def test_day_store_rejects_malformed_document(tmp_path: Path) -> None:
    (tmp_path / "2026-03-01.json").write_text('{"date": "2026-03-01"}')
    with pytest.raises(StorageError, match="malformed day document"):
        DayStore(tmp_path).has_entry("2026-03-01", "UTC", "sha:a:0")


def test_day_store_dates_skips_internal_documents(tmp_path: Path) -> None:
    store = DayStore(tmp_path)
    store.append("2026-03-02", "UTC", _entry("x"))
    store.append("2026-03-01", "UTC", _entry("y"))
    (tmp_path / "_errors.json").write_text("[]")
    assert store.dates() == ["2026-03-01", "2026-03-02"]


def test_error_log_appends_and_ignores_repeat_of_same_failure(tmp_path: Path) -> None:
    path = tmp_path / "_errors.json"
    log = ErrorLog(path)
    assert log.record(entry_id="sha:a:0", commit="a", line="time: x", reason="bad") is True
    assert log.record(entry_id="sha:a:0", commit="a", line="time: x", reason="bad") is False
    assert log.record(entry_id="sha:a:0", commit="a", line="time: x", reason="other") is True
    log.save()
    assert [e["reason"] for e in json.loads(path.read_text())] == ["bad", "other"]


def test_watermark_store_round_trip_and_default(tmp_path: Path) -> None:
    store = WatermarkStore(tmp_path / "_state.json")
    assert store.load() == Watermark()
    store.save(Watermark(last_processed="abc", recent_commits=["abc", "def"]))
    assert store.load() == Watermark(last_processed="abc", recent_commits=["abc", "def"])


def test_normalization_cache_key_depends_on_exact_pair() -> None:
    assert NormalizationCache.key_for(["a"], "n") == '{"rawTags":["a"],"note":"n"}'
    assert NormalizationCache.key_for(["a"], "n") != NormalizationCache.key_for(["A"], "n")


def test_normalization_cache_persists_and_tolerates_corruption(tmp_path: Path) -> None:
    path = tmp_path / ".cache" / "normalize.json"
    cache = NormalizationCache(path)
    cache.put("k", {"primary": "dev"})
    assert NormalizationCache(path).get("k") == {"primary": "dev"}

    path.write_text("not json")
    assert NormalizationCache(path).get("k") is None


def test_suggestion_ledger_merges_as_set_per_key(tmp_path: Path) -> None:
    path = tmp_path / "tags.suggestions.yaml"
    ledger = SuggestionLedger(path)
    assert ledger.merge({"video": ["yt", " vlog ", ""], "dev": "nope"}) == 2
    assert ledger.merge({"video": ["yt", "shorts"], "fitness": [3, "gym"]}) == 2

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data == {
        "version": 1,
        "suggestions": {"video": ["yt", "vlog", "shorts"], "fitness": ["gym"]},
    }
    assert ledger.load()["video"] == ["yt", "vlog", "shorts"]


def test_suggestion_ledger_ignores_non_mapping_input(tmp_path: Path) -> None:
    ledger = SuggestionLedger(tmp_path / "s.yaml")
    assert ledger.merge(None) == 0
    assert ledger.load() == {}
