from __future__ import annotations

import json
import logging
import math
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import GittimeConfig, load_config
from .errors import ClassificationError

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-haiku-latest"
GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
MAX_OUTPUT_TOKENS = 256

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Classification:
    primary: str
    secondary: list[str] = field(default_factory=list)
    confidence: float = 0.0
    new_alias_suggestions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary": self.primary,
            "secondary": list(self.secondary),
            "confidence": self.confidence,
            "new_alias_suggestions": self.new_alias_suggestions,
        }


@dataclass(frozen=True, slots=True)
class Rejected:
    reason: str


ClassifierOutcome = Classification | Rejected


def build_prompt(canonical: Sequence[str], raw_tags: Sequence[str], note: str) -> str:
    return " ".join(
        [
            "Return strict JSON only.",
            'Schema: {"primary":"<canonical>","secondary":["<canonical>"],'
            '"confidence":0-1,"new_alias_suggestions":{}}.',
            f"Canonical tags: {json.dumps(list(canonical), ensure_ascii=False)}.",
            f"Raw tags: {json.dumps(list(raw_tags), ensure_ascii=False)}.",
            f"Note: {json.dumps(note or '', ensure_ascii=False)}.",
        ]
    )


def _clean_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    try:
        value = float(value)
    except OverflowError:
        return 0.0
    if not math.isfinite(value) or value < 0 or value > 1:
        return 0.0
    return value


def sanitize_result(result: Any, canonical: Sequence[str]) -> ClassifierOutcome:
    if not isinstance(result, dict):
        return Rejected("response is not a JSON object")
    primary = result.get("primary")
    if not isinstance(primary, str) or primary not in canonical:
        return Rejected(f"unknown primary category: {primary!r}")
    secondary_raw = result.get("secondary")
    secondary: list[str] = []
    if isinstance(secondary_raw, list):
        for tag in secondary_raw:
            if not isinstance(tag, str) or tag not in canonical or tag == primary:
                continue
            if tag not in secondary:
                secondary.append(tag)
    suggestions = result.get("new_alias_suggestions")
    return Classification(
        primary=primary,
        secondary=secondary,
        confidence=_clean_confidence(result.get("confidence")),
        new_alias_suggestions=suggestions if isinstance(suggestions, dict) else {},
    )


def decode_classification(text: str | None, canonical: Sequence[str]) -> ClassifierOutcome:
    if not text or not text.strip():
        return Rejected("empty response")
    cleaned = text.strip()
    # Some models wrap JSON in a fenced block despite being asked not to.
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        payload = json.loads(cleaned)
    except (ValueError, RecursionError):
        # ValueError also covers integers past the digit limit.
        return Rejected("response is not valid JSON")
    return sanitize_result(payload, canonical)


def _extract_gemini_text(body: str) -> str:
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ClassificationError("gemini response is not valid JSON") from exc
    try:
        text = parsed["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ClassificationError("gemini response missing text") from exc
    if not isinstance(text, str) or not text:
        raise ClassificationError("gemini response missing text")
    return text


class ClassifierClient:
    """Single-shot category classifier backed by Gemini, OpenAI, or Anthropic."""

    def __init__(self, cfg: GittimeConfig | None = None) -> None:
        cfg = cfg or load_config()
        self.provider = cfg.classifier_provider
        self.timeout_s = cfg.classifier_timeout_s
        self.client: Any = None
        if self.provider == "anthropic":
            self.model = cfg.classifier_model or DEFAULT_ANTHROPIC_MODEL
            self.api_key = cfg.classifier_api_key or os.getenv("ANTHROPIC_API_KEY")
        elif self.provider == "openai":
            self.model = cfg.classifier_model or DEFAULT_OPENAI_MODEL
            self.api_key = cfg.classifier_api_key or os.getenv("OPENAI_API_KEY")
        else:
            self.provider = "gemini"
            self.model = cfg.classifier_model or os.getenv("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL
            self.api_key = cfg.classifier_api_key or os.getenv("GEMINI_API_KEY")

    def available(self) -> bool:
        return bool(self.api_key)

    def classify(
        self, canonical: Sequence[str], raw_tags: Sequence[str], note: str
    ) -> ClassifierOutcome:
        prompt = build_prompt(canonical, raw_tags, note)
        text = self._call(prompt)
        return decode_classification(text, canonical)

    def _call(self, prompt: str) -> str:
        if not self.api_key:
            raise ClassificationError(f"{self.provider} API key is not set")
        if self.provider == "gemini":
            return self._call_gemini(prompt)
        try:
            if self.provider == "anthropic":
                return self._call_anthropic(prompt)
            return self._call_openai(prompt)
        except ClassificationError:
            raise
        except Exception as exc:
            logger.warning(
                "classifier call failed",
                extra={"provider": self.provider, "model": self.model},
                exc_info=exc,
            )
            raise ClassificationError(f"{self.provider} call failed: {exc}") from exc

    def _get_client(self) -> Any:
        if self.client is not None:
            return self.client
        if self.provider == "anthropic":
            import anthropic

            self.client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout_s)
        else:
            from openai import OpenAI

            self.client = OpenAI(api_key=self.api_key, timeout=self.timeout_s)
        return self.client

    def _call_openai(self, prompt: str) -> str:
        resp = self._get_client().chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "You classify time-log tags."},
                {"role": "user", "content": prompt},
            ],
            temperature=0,
            max_tokens=MAX_OUTPUT_TOKENS,
            response_format={"type": "json_object"},
        )
        if not resp.choices:
            raise ClassificationError("openai response missing choices")
        return resp.choices[0].message.content or ""

    def _call_anthropic(self, prompt: str) -> str:
        resp = self._get_client().messages.create(
            model=self.model,
            max_tokens=MAX_OUTPUT_TOKENS,
            temperature=0,
            messages=[{"role": "user", "content": prompt}],
        )
        parts = [getattr(block, "text", "") for block in (resp.content or [])]
        return "".join(part for part in parts if part)

    def _call_gemini(self, prompt: str) -> str:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
                "responseMimeType": "application/json",
            },
        }
        endpoint = GEMINI_ENDPOINT.format(model=self.model)
        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                response = client.post(endpoint, params={"key": self.api_key}, json=payload)
        except httpx.HTTPError as exc:
            logger.warning(
                "gemini request failed",
                extra={"model": self.model, "exc_type": exc.__class__.__name__},
            )
            raise ClassificationError(f"gemini request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ClassificationError(f"Gemini HTTP {response.status_code}: {response.text}")
        return _extract_gemini_text(response.text)
