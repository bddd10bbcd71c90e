"""Utility helpers for the Movieboxd service."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable


HTML_TAG_RE = re.compile(r"<[^>]+>")
DEFAULT_USERNAME = "movieboxd-user"


def slugify(value: str, *, fallback: str = DEFAULT_USERNAME) -> str:
    """Return a lower-case slug; characters outside ``a-z0-9`` become dashes."""

    value = re.sub(r"[^a-z0-9]+", "-", value.lower())
    return value.strip("-") or fallback


def strip_html(value: str | None) -> str | None:
    """Remove markup from upstream summaries, returning ``None`` when empty."""

    if not value:
        return None
    return HTML_TAG_RE.sub("", value).strip() or None


def extract_year(value: str | None) -> int | None:
    """Return the year prefix of an ISO-ish date string."""

    if not isinstance(value, str) or len(value) < 4:
        return None
    try:
        return int(value[:4])
    except ValueError:
        return None


def parse_date(value: str | None) -> date | None:
    """Parse a date or datetime string, returning ``None`` when invalid."""

    if not value:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return date.fromisoformat(candidate)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(candidate.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def clean_text(value: str | None) -> str | None:
    """Trim free text, collapsing blank input to ``None``."""

    if value is None:
        return None
    return value.strip() or None


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """Lower-case, trim and de-duplicate tag names preserving first-seen order."""

    cleaned: list[str] = []
    for tag in tags or ():
        name = tag.strip().lower()
        if name and name not in cleaned:
            cleaned.append(name)
    return cleaned


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """Return the half-open ``[start, end)`` range covering a calendar month."""

    start = date(year, month, 1)
    if month == 12:
        return start, date(year + 1, 1, 1)
    return start, date(year, month + 1, 1)


def year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year + 1, 1, 1)
