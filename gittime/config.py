from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/gittime/config.json").expanduser()

CLASSIFIER_PROVIDERS = {"gemini", "openai", "anthropic"}

CONFIG_ENV_OVERRIDES = {
    "data_dir": "GITTIME_DATA_DIR",
    "tags_path": "GITTIME_TAGS_PATH",
    "cache_path": "GITTIME_CACHE_PATH",
    "suggestions_path": "GITTIME_SUGGESTIONS_PATH",
    "llm_enabled": "GITTIME_LLM_ENABLED",
    "recent_window": "GITTIME_RECENT_WINDOW",
    "classifier_provider": "GITTIME_CLASSIFIER_PROVIDER",
    "classifier_model": "GITTIME_CLASSIFIER_MODEL",
    "classifier_timeout_s": "GITTIME_CLASSIFIER_TIMEOUT_S",
    "repo": "GITTIME_REPO",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("GITTIME_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class GittimeConfig:
    data_dir: str = "data"
    tags_path: str = "tags.yaml"
    cache_path: str = ".cache/normalize.json"
    suggestions_path: str = "tags.suggestions.yaml"
    llm_enabled: bool = False
    # Most recent commits re-examined on every run, independent of the watermark.
    recent_window: int = 20
    classifier_provider: str = "gemini"
    classifier_model: str | None = None
    classifier_api_key: str | None = None
    classifier_timeout_s: int = 30
    repo: str | None = None


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str, minimum: int = 0) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed < minimum:
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_provider(value: object, default: str) -> str:
    if value is None:
        return default
    provider = str(value).strip().lower()
    if provider not in CLASSIFIER_PROVIDERS:
        warnings.warn(f"Unknown classifier provider: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return provider


def load_config(path: Path | None = None) -> GittimeConfig:
    cfg = GittimeConfig()
    cfg = _apply_dict(cfg, read_config_file(path))
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: GittimeConfig, data: dict[str, Any]) -> GittimeConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key == "recent_window":
            cfg.recent_window = _parse_int(value, cfg.recent_window, key=key)
            continue
        if key == "classifier_timeout_s":
            cfg.classifier_timeout_s = _parse_int(
                value, cfg.classifier_timeout_s, key=key, minimum=1
            )
            continue
        if key == "llm_enabled":
            cfg.llm_enabled = _coerce_bool(value, cfg.llm_enabled, key=key)
            continue
        if key == "classifier_provider":
            cfg.classifier_provider = _coerce_provider(value, cfg.classifier_provider)
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: GittimeConfig) -> GittimeConfig:
    # LLM_ENABLED is the older name used by existing CI workflows.
    cfg.llm_enabled = _parse_bool(os.getenv("LLM_ENABLED"), cfg.llm_enabled)
    cfg = _apply_dict(cfg, get_env_overrides())
    cfg.classifier_api_key = os.getenv("GITTIME_CLASSIFIER_API_KEY", cfg.classifier_api_key)
    return cfg
