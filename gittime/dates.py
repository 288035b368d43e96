from __future__ import annotations

import datetime as dt
import re
from zoneinfo import ZoneInfo

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)


def parse_commit_timestamp(value: str) -> dt.datetime:
    """Parse a git ``%aI`` timestamp. Naive values are taken as UTC."""

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def project_date(timestamp: str | dt.datetime, timezone: str) -> dt.date:
    moment = parse_commit_timestamp(timestamp) if isinstance(timestamp, str) else timestamp
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.UTC)
    return moment.astimezone(ZoneInfo(timezone)).date()


def resolve_date_token(
    token: str | None, commit_timestamp: str | dt.datetime, timezone: str
) -> str | None:
    if not token:
        return None
    if token == "today":
        return project_date(commit_timestamp, timezone).isoformat()
    if token == "yesterday":
        return (project_date(commit_timestamp, timezone) - dt.timedelta(days=1)).isoformat()
    # Shape check only: 2026-02-30 passes through unchanged.
    if ISO_DATE_RE.match(token):
        return token
    return None
