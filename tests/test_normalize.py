from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from gittime.classifier import Classification, Rejected
from gittime.errors import ClassificationError
from gittime.normalize import (
    FALLBACK,
    ClassifierFallback,
    Normalized,
    Normalizer,
    normalize_by_alias,
)
from gittime.store import NormalizationCache, SuggestionLedger
from gittime.tags import build_tag_index

INDEX = build_tag_index(
    {
        "timezone": "UTC",
        "tags": {
            "video": {"aliases": ["youtube", "yt"]},
            "writing": {"aliases": ["blog"]},
            "dev": {"aliases": ["code"]},
        },
    }
)


class FakeClassifier:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.calls: list[tuple] = []

    def classify(self, canonical, raw_tags, note):
        self.calls.append((tuple(canonical), list(raw_tags), note))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _fallback(tmp_path: Path, outcome) -> tuple[ClassifierFallback, FakeClassifier]:
    fake = FakeClassifier(outcome)
    fallback = ClassifierFallback(
        fake,
        NormalizationCache(tmp_path / ".cache" / "normalize.json"),
        SuggestionLedger(tmp_path / "tags.suggestions.yaml"),
    )
    return fallback, fake


def test_alias_stage_sets_primary_secondary_and_full_confidence() -> None:
    assert normalize_by_alias(["yt", "blog", "youtube"], INDEX) == Normalized(
        primary="video", secondary=["writing"], confidence=1.0, method="alias"
    )
    assert normalize_by_alias(["unknown"], INDEX) is None


def test_disabled_fallback_yields_uncategorized_without_calls() -> None:
    normalizer = Normalizer(INDEX, fallback=None)
    result = normalizer.normalize(["nonexistent"], "")
    assert result == FALLBACK
    assert result.to_dict() == {
        "primary": "uncategorized",
        "secondary": [],
        "confidence": 0.0,
        "method": "fallback",
    }


def test_alias_match_never_reaches_classifier(tmp_path: Path) -> None:
    fallback, fake = _fallback(tmp_path, Classification(primary="dev"))
    result = Normalizer(INDEX, fallback).normalize(["code"], "")
    assert result.method == "alias"
    assert fake.calls == []


def test_llm_result_is_labelled_and_cached(tmp_path: Path) -> None:
    outcome = Classification(
        primary="writing",
        secondary=["dev"],
        confidence=0.6,
        new_alias_suggestions={"writing": ["essay"]},
    )
    fallback, fake = _fallback(tmp_path, outcome)
    normalizer = Normalizer(INDEX, fallback)

    first = normalizer.normalize(["essay"], "draft intro")
    second = normalizer.normalize(["essay"], "draft intro")

    assert first == Normalized(primary="writing", secondary=["dev"], confidence=0.6, method="llm")
    assert second == first
    assert len(fake.calls) == 1
    assert fake.calls[0] == (("video", "writing", "dev"), ["essay"], "draft intro")
    assert fallback.calls == 1


def test_cache_survives_new_fallback_instance(tmp_path: Path) -> None:
    fallback, fake = _fallback(tmp_path, Classification(primary="dev", confidence=0.9))
    fallback.normalize(INDEX.canonical, ["hack"], "")
    assert len(fake.calls) == 1

    again, fake_again = _fallback(tmp_path, Classification(primary="video"))
    result = again.normalize(INDEX.canonical, ["hack"], "")
    assert result.primary == "dev"
    assert result.confidence == 0.9
    assert fake_again.calls == []


def test_different_note_is_a_cache_miss(tmp_path: Path) -> None:
    fallback, fake = _fallback(tmp_path, Classification(primary="dev"))
    fallback.normalize(INDEX.canonical, ["hack"], "a")
    fallback.normalize(INDEX.canonical, ["hack"], "b")
    assert len(fake.calls) == 2


def test_success_harvests_suggestions_without_touching_index(tmp_path: Path) -> None:
    outcome = Classification(primary="video", new_alias_suggestions={"video": ["vlog", "vlog"]})
    fallback, _fake = _fallback(tmp_path, outcome)
    fallback.normalize(INDEX.canonical, ["vlog"], "")

    data = yaml.safe_load((tmp_path / "tags.suggestions.yaml").read_text(encoding="utf-8"))
    assert data["suggestions"] == {"video": ["vlog"]}
    assert INDEX.lookup("vlog") is None


def test_rejection_raises_and_caches_nothing(tmp_path: Path) -> None:
    fallback, fake = _fallback(tmp_path, Rejected("unknown primary category: 'x'"))
    with pytest.raises(ClassificationError, match="unknown primary"):
        Normalizer(INDEX, fallback).normalize(["mystery"], "")
    assert not (tmp_path / ".cache" / "normalize.json").exists()
    assert not (tmp_path / "tags.suggestions.yaml").exists()

    with pytest.raises(ClassificationError):
        fallback.normalize(INDEX.canonical, ["mystery"], "")
    assert len(fake.calls) == 2


def test_transport_failure_propagates(tmp_path: Path) -> None:
    fallback, _fake = _fallback(tmp_path, ClassificationError("Gemini HTTP 500: boom"))
    with pytest.raises(ClassificationError, match="HTTP 500"):
        Normalizer(INDEX, fallback).normalize(["mystery"], "")
