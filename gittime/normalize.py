from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from .classifier import Classification, ClassifierOutcome, Rejected
from .errors import ClassificationError
from .store import NormalizationCache, SuggestionLedger
from .tags import TagIndex, normalize_tags

UNCATEGORIZED = "uncategorized"
METHOD_ALIAS = "alias"
METHOD_LLM = "llm"
METHOD_FALLBACK = "fallback"

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    def classify(
        self, canonical: Sequence[str], raw_tags: Sequence[str], note: str
    ) -> ClassifierOutcome: ...


@dataclass(frozen=True, slots=True)
class Normalized:
    primary: str
    secondary: list[str] = field(default_factory=list)
    confidence: float = 0.0
    method: str = METHOD_FALLBACK

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary": self.primary,
            "secondary": list(self.secondary),
            "confidence": self.confidence,
            "method": self.method,
        }


FALLBACK = Normalized(primary=UNCATEGORIZED, secondary=[], confidence=0.0, method=METHOD_FALLBACK)


def normalize_by_alias(raw_tags: Sequence[str], index: TagIndex) -> Normalized | None:
    matched = normalize_tags(raw_tags, index)
    if not matched:
        return None
    return Normalized(
        primary=matched[0], secondary=matched[1:], confidence=1.0, method=METHOD_ALIAS
    )


class ClassifierFallback:
    """Cached classifier lookups for lines the alias table could not place.

    Results are cached under the exact (raw tags, note) pair, so repeated lines in a run
    and re-runs over overlapping commits never reach the classifier twice. Successful
    results also feed alias suggestions into the ledger for manual review.
    """

    def __init__(
        self,
        classifier: Classifier,
        cache: NormalizationCache,
        ledger: SuggestionLedger,
    ) -> None:
        self.classifier = classifier
        self.cache = cache
        self.ledger = ledger
        self.calls = 0

    def normalize(
        self, canonical: Sequence[str], raw_tags: Sequence[str], note: str
    ) -> Classification:
        key = self.cache.key_for(raw_tags, note)
        cached = self.cache.get(key)
        if cached is not None and isinstance(cached.get("primary"), str):
            logger.debug("normalize cache hit", extra={"cache_key": key})
            return Classification(
                primary=cached["primary"],
                secondary=list(cached.get("secondary") or []),
                confidence=float(cached.get("confidence") or 0.0),
                new_alias_suggestions=cached.get("new_alias_suggestions") or {},
            )

        self.calls += 1
        outcome = self.classifier.classify(canonical, raw_tags, note)
        if isinstance(outcome, Rejected):
            raise ClassificationError(outcome.reason)

        self.cache.put(key, outcome.to_dict())
        added = self.ledger.merge(outcome.new_alias_suggestions)
        if added:
            logger.info("alias suggestions recorded", extra={"count": added})
        return outcome


class Normalizer:
    def __init__(self, index: TagIndex, fallback: ClassifierFallback | None = None) -> None:
        self.index = index
        self.fallback = fallback

    def normalize(self, raw_tags: Sequence[str], note: str) -> Normalized:
        """Resolve categories for one line.

        Raises ``ClassificationError`` when the classifier stage runs and fails; callers
        record the failure and store the line under ``FALLBACK``.
        """

        by_alias = normalize_by_alias(raw_tags, self.index)
        if by_alias is not None:
            return by_alias
        if self.fallback is None:
            return FALLBACK
        result = self.fallback.normalize(self.index.canonical, raw_tags, note)
        return Normalized(
            primary=result.primary,
            secondary=list(result.secondary),
            confidence=result.confidence,
            method=METHOD_LLM,
        )
