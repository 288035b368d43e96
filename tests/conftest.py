from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_gittime_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("GITTIME_") or name in {"LLM_ENABLED", "GEMINI_API_KEY", "GEMINI_MODEL"}:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GITTIME_CONFIG", str(tmp_path / "missing-config.json"))
