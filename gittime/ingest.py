from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .classifier import ClassifierClient
from .config import GittimeConfig
from .dates import resolve_date_token
from .errors import ClassificationError, GitQueryError
from .git_info import CommitLog, CommitRecord, GitLogReader, detect_repo_name
from .grammar import LineError, ParsedLine, parse_duration, parse_time_line
from .normalize import FALLBACK, ClassifierFallback, Normalized, Normalizer
from .store import (
    ERRORS_FILENAME,
    STATE_FILENAME,
    DayStore,
    ErrorLog,
    NormalizationCache,
    SuggestionLedger,
    Watermark,
    WatermarkStore,
)
from .tags import TagIndex, load_tags

MODE_BOOTSTRAP = "bootstrap"
MODE_INCREMENTAL = "incremental"
MODE_DEGRADED = "degraded-incremental"

INVALID_DATE_OR_DURATION = "invalid date or duration"
# Only \n and \r\n end a line; other separators stay inside it.
LINE_BREAK_RE = re.compile(r"\r?\n")

logger = logging.getLogger(__name__)


def entry_id(sha: str, index: int) -> str:
    return f"sha:{sha}:{index}"


@dataclass
class IngestSummary:
    added: int = 0
    skipped: int = 0
    errored: int = 0
    commits: int = 0
    mode: str = MODE_BOOTSTRAP

    def as_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "skipped": self.skipped,
            "errored": self.errored,
            "commits": self.commits,
            "mode": self.mode,
        }


def merge_commits(*groups: list[CommitRecord]) -> list[CommitRecord]:
    seen: set[str] = set()
    merged: list[CommitRecord] = []
    for group in groups:
        for commit in group:
            if commit.sha in seen:
                continue
            seen.add(commit.sha)
            merged.append(commit)
    return merged


class IngestCoordinator:
    """Turns ``time:`` lines from commit messages into day-store entries.

    Commits and lines are handled strictly in order. An entry's id depends only on its
    commit and its position among that commit's ``time:`` lines, and an id that already
    exists in its day document is skipped, so any run may overlap earlier ones.
    """

    def __init__(
        self,
        *,
        reader: CommitLog,
        tag_index: TagIndex,
        day_store: DayStore,
        error_log: ErrorLog,
        watermark_store: WatermarkStore,
        normalizer: Normalizer,
        repo: str = "unknown",
        recent_window: int = 20,
    ) -> None:
        self.reader = reader
        self.tag_index = tag_index
        self.day_store = day_store
        self.error_log = error_log
        self.watermark_store = watermark_store
        self.normalizer = normalizer
        self.repo = repo
        self.recent_window = max(0, recent_window)

    def select_commits(
        self, watermark: Watermark
    ) -> tuple[list[CommitRecord], list[CommitRecord], str]:
        """Return (commits to process, current recent window, selection mode)."""

        if watermark.last_processed is None:
            mode = MODE_BOOTSTRAP
            selected = self.reader.all_commits()
        else:
            try:
                selected = self.reader.commits_after(watermark.last_processed)
                mode = MODE_INCREMENTAL
            except GitQueryError as exc:
                logger.warning(
                    "incremental commit query failed, rescanning full history",
                    extra={"watermark": watermark.last_processed, "error": str(exc)},
                )
                selected = self.reader.all_commits()
                mode = MODE_DEGRADED
        recent = self.reader.recent_commits(self.recent_window)
        current = {commit.sha for commit in recent}
        dropped = [sha for sha in watermark.recent_commits if sha not in current]
        if dropped and mode == MODE_INCREMENTAL:
            logger.info("recent history changed since last run", extra={"dropped": len(dropped)})
        return merge_commits(selected, recent), recent, mode

    def run(self) -> IngestSummary:
        watermark = self.watermark_store.load()
        commits, recent, mode = self.select_commits(watermark)
        summary = IngestSummary(mode=mode, commits=len(commits))
        logger.info("ingest start", extra={"mode": mode, "commits": len(commits)})

        try:
            for commit in commits:
                self.process_commit(commit, summary)
        finally:
            # Lines already stored as fallback are skipped next run; keep their errors.
            self.error_log.save()
        head = recent[0].sha if recent else self._head_sha(watermark)
        self.watermark_store.save(
            Watermark(last_processed=head, recent_commits=[commit.sha for commit in recent])
        )
        logger.info("ingest complete", extra=summary.as_dict())
        return summary

    def _head_sha(self, watermark: Watermark) -> str | None:
        # Only reached with a zero-size recent window.
        head = self.reader.recent_commits(1)
        return head[0].sha if head else watermark.last_processed

    def process_commit(self, commit: CommitRecord, summary: IngestSummary) -> None:
        index = 0
        for line in LINE_BREAK_RE.split(commit.message):
            parsed = parse_time_line(line)
            if parsed is None:
                continue
            line_id = entry_id(commit.sha, index)
            index += 1
            if isinstance(parsed, LineError):
                self._record_error(summary, line_id, commit, line, parsed.reason)
                continue
            self.process_line(commit, line, line_id, parsed, summary)

    def process_line(
        self,
        commit: CommitRecord,
        line: str,
        line_id: str,
        parsed: ParsedLine,
        summary: IngestSummary,
    ) -> None:
        timezone = self.tag_index.timezone
        date = resolve_date_token(parsed.date_token, commit.timestamp, timezone)
        hours = parse_duration(parsed.duration_token)
        if date is None or hours is None:
            self._record_error(summary, line_id, commit, line, INVALID_DATE_OR_DURATION)
            return

        if self.day_store.has_entry(date, timezone, line_id):
            summary.skipped += 1
            return

        try:
            normalized = self.normalizer.normalize(parsed.tags, parsed.note)
        except ClassificationError as exc:
            logger.warning(
                "classifier normalization failed", extra={"id": line_id, "error": str(exc)}
            )
            self._record_error(summary, line_id, commit, line, f"llm_error:{exc}")
            normalized = FALLBACK

        entry = self.build_entry(commit, line_id, hours, parsed, normalized)
        self.day_store.append(date, timezone, entry)
        summary.added += 1
        logger.debug(
            "entry added",
            extra={"id": line_id, "date": date, "hours": hours, "primary": normalized.primary},
        )

    def build_entry(
        self,
        commit: CommitRecord,
        line_id: str,
        hours: float,
        parsed: ParsedLine,
        normalized: Normalized,
    ) -> dict[str, Any]:
        return {
            "id": line_id,
            "at": commit.timestamp,
            "hours": hours,
            "raw": parsed.to_raw(),
            "normalized": normalized.to_dict(),
            "source": {"repo": self.repo, "commit": commit.sha},
        }

    def _record_error(
        self,
        summary: IngestSummary,
        line_id: str,
        commit: CommitRecord,
        line: str,
        reason: str,
    ) -> None:
        summary.errored += 1
        if self.error_log.record(entry_id=line_id, commit=commit.sha, line=line, reason=reason):
            logger.warning(
                "time line rejected",
                extra={"id": line_id, "commit": commit.sha, "reason": reason},
            )


def build_coordinator(
    cfg: GittimeConfig,
    *,
    repo_path: str | None = None,
    reader: CommitLog | None = None,
    classifier: Any = None,
) -> IngestCoordinator:
    """Wire file-backed stores and the git reader from configuration."""

    tag_index = load_tags(cfg.tags_path)
    data_dir = Path(cfg.data_dir).expanduser()
    fallback = None
    if cfg.llm_enabled:
        if classifier is None:
            classifier = ClassifierClient(cfg)
            if not classifier.available():
                logger.warning(
                    "classifier fallback enabled without an API key; unmatched lines will fail",
                    extra={"provider": classifier.provider},
                )
        fallback = ClassifierFallback(
            classifier,
            NormalizationCache(cfg.cache_path),
            SuggestionLedger(cfg.suggestions_path),
        )
    return IngestCoordinator(
        reader=reader or GitLogReader(repo_path),
        tag_index=tag_index,
        day_store=DayStore(data_dir),
        error_log=ErrorLog(data_dir / ERRORS_FILENAME),
        watermark_store=WatermarkStore(data_dir / STATE_FILENAME),
        normalizer=Normalizer(tag_index, fallback),
        repo=cfg.repo or detect_repo_name(repo_path),
        recent_window=cfg.recent_window,
    )
