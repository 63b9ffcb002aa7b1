"""
Date range value type and cache-key helpers

Provides:
    - DateRange: immutable {start, end} window, either bound optional
    - range_key(): canonical JSON used as a cache-key component
    - fiscal_year_ranges(): the two windows the cache warmer keeps hot
    - rolling_range(): "last6months" / "last12months" / "alltime" windows
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date

FISCAL_YEAR_START_MONTH = 9  # September 1

ROLLING_WINDOWS = ("last6months", "last12months", "alltime")


def _parse_date(value: "str | date | None") -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


@dataclass(frozen=True)
class DateRange:
    """
    Immutable date window.

    ``start=None`` means unbounded in the past, ``end=None`` means "to present".

    Example:
        >>> DateRange(date(2025, 9, 1)).cache_key()
        '{"start":"2025-09-01","end":null}'
    """

    start: date | None = None
    end: date | None = None

    def __post_init__(self) -> None:
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"start {self.start} is after end {self.end}")

    @classmethod
    def from_strings(cls, start: str | None, end: str | None) -> "DateRange":
        return cls(_parse_date(start), _parse_date(end))

    @classmethod
    def from_query(cls, query: Mapping[str, str], today: date | None = None) -> "DateRange | None":
        """
        Build a range from request query parameters.

        Explicit ``start``/``end`` win; otherwise ``range`` names a rolling
        window. Returns None when neither is present or the window is unknown.
        """
        if query.get("start") or query.get("end"):
            return cls.from_strings(query.get("start"), query.get("end"))

        window = query.get("range")
        if window in ROLLING_WINDOWS:
            return rolling_range(window, today)
        return None

    def to_dict(self) -> dict[str, str | None]:
        """Canonical form with stable field order."""
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }

    def cache_key(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def __str__(self) -> str:
        return f"{self.start or '...'} -> {self.end or 'present'}"


def range_key(date_range: DateRange | None) -> str:
    """Cache-key component for a range; a missing range serializes as ``null``."""
    return date_range.cache_key() if date_range is not None else "null"


def fiscal_year_start(today: date) -> date:
    """September 1 of the most recently begun fiscal year."""
    year = today.year if today.month >= FISCAL_YEAR_START_MONTH else today.year - 1
    return date(year, FISCAL_YEAR_START_MONTH, 1)


def fiscal_year_ranges(today: date) -> list[DateRange]:
    """
    Current fiscal-year-to-date window followed by the preceding full fiscal year.

    Example:
        fiscal_year_ranges(date(2026, 10, 19))
        -> [2026-09-01 -> present, 2025-09-01 -> 2026-08-31]
    """
    current_start = fiscal_year_start(today)
    previous_start = current_start.replace(year=current_start.year - 1)
    previous_end = date(current_start.year, FISCAL_YEAR_START_MONTH - 1, 31)
    return [DateRange(current_start, None), DateRange(previous_start, previous_end)]


def _months_back(today: date, months: int) -> date:
    index = today.year * 12 + (today.month - 1) - months
    return date(index // 12, index % 12 + 1, 1)


def rolling_range(window: str, today: date | None = None) -> DateRange:
    """
    Rolling window starting on the first of the month N months back, open-ended.

    Raises:
        ValueError: For an unknown window name
    """
    today = today or date.today()
    if window == "last6months":
        return DateRange(_months_back(today, 6), None)
    if window == "last12months":
        return DateRange(_months_back(today, 12), None)
    if window == "alltime":
        return DateRange(None, None)
    raise ValueError(f"Unknown rolling window: {window}")
