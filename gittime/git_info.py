from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .errors import GitQueryError

# Fields are unit-separated, records record-separated, so bodies may hold anything else.
LOG_FORMAT = "%H%x1f%aI%x1f%B%x1e"


@dataclass(frozen=True, slots=True)
class CommitRecord:
    sha: str
    timestamp: str
    message: str


class CommitLog(Protocol):
    def all_commits(self) -> list[CommitRecord]: ...

    def commits_after(self, sha: str) -> list[CommitRecord]: ...

    def recent_commits(self, limit: int) -> list[CommitRecord]: ...


def run_command(cmd: Sequence[str], cwd: str | None = None) -> str:
    try:
        out = subprocess.check_output(cmd, cwd=cwd, stderr=subprocess.STDOUT, text=True)
        return out.strip()
    except subprocess.CalledProcessError as exc:
        return exc.output.strip()
    except FileNotFoundError:
        return ""


def detect_repo_name(cwd: str | None = None) -> str:
    remote = run_command(["git", "config", "--get", "remote.origin.url"], cwd=cwd)
    if not remote or remote.startswith(("fatal:", "error:")):
        return "unknown"
    return remote


def parse_log_output(output: str) -> list[CommitRecord]:
    commits: list[CommitRecord] = []
    for chunk in output.split("\x1e"):
        chunk = chunk.strip()
        if not chunk:
            continue
        parts = chunk.split("\x1f")
        if len(parts) < 2:
            continue
        sha, timestamp = parts[0].strip(), parts[1].strip()
        body = parts[2] if len(parts) > 2 else ""
        commits.append(CommitRecord(sha=sha, timestamp=timestamp, message=body))
    return commits


class GitLogReader:
    """Reads commits newest-first from ``git log`` in ``cwd``."""

    def __init__(self, cwd: str | None = None) -> None:
        self.cwd = cwd

    def _git(self, args: Sequence[str]) -> str:
        cmd = ["git", *args]
        try:
            return subprocess.check_output(
                cmd,
                cwd=self.cwd,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
            raise GitQueryError(f"{' '.join(cmd)}: {detail}") from exc
        except FileNotFoundError as exc:
            raise GitQueryError("git executable not found") from exc

    def _log(self, *args: str) -> list[CommitRecord]:
        return parse_log_output(self._git(["log", f"--pretty=format:{LOG_FORMAT}", *args]))

    def has_commits(self) -> bool:
        # Raises when cwd is not a repository at all; an unborn HEAD is just empty.
        self._git(["rev-parse", "--git-dir"])
        try:
            self._git(["rev-parse", "--verify", "--quiet", "HEAD"])
        except GitQueryError:
            return False
        return True

    def all_commits(self) -> list[CommitRecord]:
        if not self.has_commits():
            return []
        return self._log()

    def commits_after(self, sha: str) -> list[CommitRecord]:
        # The trailing "--" keeps an unknown sha from being read as a path.
        return self._log(f"{sha}..HEAD", "--")

    def recent_commits(self, limit: int) -> list[CommitRecord]:
        if limit <= 0 or not self.has_commits():
            return []
        return self._log(f"--max-count={limit}")
