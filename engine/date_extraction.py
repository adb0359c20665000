"""Release-date extraction and date proximity scoring."""

from __future__ import annotations

import re
from datetime import date, datetime

_MIN_DATE = date(1980, 1, 1)


def _four_digit_year(value: str) -> int:
    return int(value)


def _two_digit_year(value: str) -> int:
    year = int(value)
    return 1900 + year if year >= 50 else 2000 + year


# (pattern, year group, month group, day group, year parser), most specific first.
_DATE_PATTERNS = (
    (re.compile(r"\b(20\d{2})[-._](0[1-9]|1[0-2])[-._](0[1-9]|[12]\d|3[01])\b"), 1, 2, 3, _four_digit_year),
    (re.compile(r"\b(0[1-9]|[12]\d|3[01])[-._](0[1-9]|1[0-2])[-._](20\d{2})\b"), 3, 2, 1, _four_digit_year),
    (re.compile(r"\b(20\d{2})(0[1-9]|1[0-2])(0[1-9]|[12]\d|3[01])\b"), 1, 2, 3, _four_digit_year),
    (re.compile(r"\b(\d{2})[-._](0[1-9]|1[0-2])[-._](0[1-9]|[12]\d|3[01])\b"), 1, 2, 3, _two_digit_year),
)

# (max day difference, similarity)
_SIMILARITY_STEPS = (
    (0, 1.0),
    (7, 0.95),
    (30, 0.8),
    (90, 0.6),
    (180, 0.4),
    (365, 0.2),
)

# (min similarity, bonus points)
_BONUS_STEPS = (
    (0.95, 5),
    (0.8, 3),
    (0.6, 2),
    (0.4, 1),
)


def extract_date(title: str | None, *, today: date | None = None) -> date | None:
    """Return the first plausible date found in a release title.

    Dates in the future or before 1980 are ignored and the next pattern is tried.
    """
    text = str(title or "")
    upper = today or date.today()
    for pattern, year_group, month_group, day_group, parse_year in _DATE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        try:
            found = date(
                parse_year(match.group(year_group)),
                int(match.group(month_group)),
                int(match.group(day_group)),
            )
        except ValueError:
            continue
        if _MIN_DATE <= found <= upper:
            return found
    return None


def parse_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def date_similarity(first: date, second: date) -> float:
    days = abs((second - first).days)
    for max_days, similarity in _SIMILARITY_STEPS:
        if days <= max_days:
            return similarity
    return 0.0


def date_bonus(release_date: date | None, scene_date: str | None) -> int:
    """Bonus points (0-5) for a release date close to the scene's release date."""
    if release_date is None or not scene_date:
        return 0
    parsed = parse_iso_date(scene_date)
    if parsed is None:
        return 0
    similarity = date_similarity(release_date, parsed)
    for min_similarity, bonus in _BONUS_STEPS:
        if similarity >= min_similarity:
            return bonus
    return 0
