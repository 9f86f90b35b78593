from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_datetime_value(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as produced by Jira, GitLab or AWS.

    Accepts a trailing ``Z`` and Jira's ``+0000`` offsets. Returns None for
    empty input and raises ValueError for unparseable strings.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _to_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Jira emits offsets without a colon (2024-01-01T10:00:00.000+0000).
    if len(text) >= 5 and text[-5] in "+-" and text[-4:].isdigit() and "T" in text:
        text = f"{text[:-2]}:{text[-2:]}"
    return _to_utc(datetime.fromisoformat(text))


def _parse_date_value(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_since(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return _parse_datetime_value(value)


@dataclass(frozen=True)
class DateRange:
    """Closed UTC time window used by the metrics and DORA queries."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _to_utc(self.start))
        object.__setattr__(self, "end", _to_utc(self.end))
        if self.start > self.end:
            raise ValueError(
                f"DateRange start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @classmethod
    def of(cls, start_date: date, end_date: date) -> "DateRange":
        """Cover ``start_date`` 00:00:00 through ``end_date`` 23:59:59 UTC."""
        return cls(
            datetime.combine(start_date, time.min, tzinfo=timezone.utc),
            datetime.combine(end_date, time(23, 59, 59), tzinfo=timezone.utc),
        )

    @classmethod
    def last_days(cls, days: int, now: Optional[datetime] = None) -> "DateRange":
        end = _to_utc(now) if now is not None else datetime.now(timezone.utc)
        return cls(end - timedelta(days=days), end)

    @property
    def days(self) -> int:
        """Whole days between start and end, as a calendar-unaware difference."""
        return (self.end - self.start).days
