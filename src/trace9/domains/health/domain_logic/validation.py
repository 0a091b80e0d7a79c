"""Input validation for daily logs, targets and intervention dates.

Malformed input is rejected here, before it reaches the pipeline; the flag
engine and detectors assume validated values and never re-check ranges.
Computed flag fields are never accepted from callers.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import date
from typing import Any

from trace9.core.storage.models import FLAG_FIELDS, RAW_FIELDS

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SUSPICIOUS_SQL_RE = re.compile(r"\b(drop|delete|insert|update|union|select)\b", re.IGNORECASE)
SUSPICIOUS_XSS_RE = re.compile(
    r"(<\s*script\b|javascript:|onerror\s*=|onload\s*=|<\s*img\b|<\s*svg\b|<\s*iframe\b|<\s*body\b)",
    re.IGNORECASE,
)

MAX_SYMPTOM_NAME_LENGTH = 200

# (min, max), inclusive
_INTEGER_RANGES: dict[str, tuple[int, int]] = {
    "rhr": (1, 299),
    "protein": (0, 5000),
    "gut": (1, 5),
    "sun": (1, 5),
    "exercise": (1, 5),
    "symptom_score": (0, 5),
}

_TARGET_RANGES: dict[str, tuple[int, int]] = {
    "protein_target": (0, 5000),
    "gut_target": (1, 5),
    "sun_target": (1, 5),
    "exercise_target": (1, 5),
}

_TARGET_PASSTHROUGH = (
    "sleep_baseline",
    "rhr_baseline",
    "hrv_baseline",
    "is_baseline_complete",
    "onboarding_complete",
)


class ValidationError(Exception):
    """Raised when a payload fails validation."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def validate_date(value: Any, field: str = "date") -> str:
    """Check ``value`` is a real calendar date in ``YYYY-MM-DD`` form."""
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise ValidationError(f"`{field}` must be YYYY-MM-DD")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"`{field}` must be a valid calendar date") from None
    return value


def validate_symptom_name(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("`symptom_name` must be a string")
    name = value.strip()
    if len(name) > MAX_SYMPTOM_NAME_LENGTH:
        raise ValidationError(
            f"`symptom_name` must be at most {MAX_SYMPTOM_NAME_LENGTH} characters"
        )
    if SUSPICIOUS_SQL_RE.search(name) or SUSPICIOUS_XSS_RE.search(name):
        raise ValidationError("`symptom_name` contains disallowed content")
    return name or None


def validate_daily_log(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validate one day's raw values.

    Args:
        payload: ``date``, the eight raw metrics and an optional
            ``symptom_name``.

    Returns:
        A clean dict with integer fields coerced to ``int`` and the symptom
        name trimmed.

    Raises:
        ValidationError: On missing fields, out-of-range values, a malformed
            date, disallowed symptom text, or any computed flag field.
    """
    supplied_flags = sorted(set(payload) & set(FLAG_FIELDS))
    if supplied_flags:
        raise ValidationError(f"Flag fields are computed, not accepted: {', '.join(supplied_flags)}")

    missing = [f for f in ("date", *RAW_FIELDS) if payload.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    clean: dict[str, Any] = {"date": validate_date(payload["date"])}

    sleep = payload["sleep"]
    if not _is_number(sleep) or not 0 <= sleep <= 24:
        raise ValidationError("`sleep` must be a number between 0 and 24")
    clean["sleep"] = float(sleep)

    hrv = payload["hrv"]
    if not _is_number(hrv) or not math.isfinite(hrv) or hrv < 0:
        raise ValidationError("`hrv` must be a non-negative number")
    clean["hrv"] = float(hrv)

    for field, (low, high) in _INTEGER_RANGES.items():
        value = payload[field]
        if not _is_integer(value) or not low <= value <= high:
            raise ValidationError(f"`{field}` must be an integer between {low} and {high}")
        clean[field] = int(value)

    clean["symptom_name"] = validate_symptom_name(payload.get("symptom_name"))
    return clean


def validate_targets(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial targets update.

    Only the four manual targets are range-checked; baselines and the two
    onboarding booleans pass through. The intervention lock cannot be set
    from here.
    """
    clean: dict[str, Any] = {}
    for field, value in payload.items():
        if field in _TARGET_RANGES:
            low, high = _TARGET_RANGES[field]
            if not _is_integer(value) or not low <= value <= high:
                raise ValidationError(f"`{field}` must be integer {low}-{high}")
            clean[field] = int(value)
        elif field in _TARGET_PASSTHROUGH:
            clean[field] = value
        else:
            raise ValidationError(f"Unknown or read-only target field: {field}")
    return clean
