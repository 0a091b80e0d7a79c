"""Calendar-date helpers. Dates are ``YYYY-MM-DD`` strings throughout.

The fixed-width, zero-padded format means plain string comparison orders
dates correctly, so storage queries and overlap checks compare strings.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def parse_date(value: str) -> date:
    return date.fromisoformat(value)


def shift_days(value: str, days: int) -> str:
    """Calendar arithmetic on a date string (negative ``days`` goes back)."""
    return (parse_date(value) + timedelta(days=days)).isoformat()


def today_iso() -> str:
    """Today's UTC calendar date."""
    return datetime.now(timezone.utc).date().isoformat()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
