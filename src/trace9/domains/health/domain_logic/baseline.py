"""Rolling 7-day wearable baselines."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from trace9.domains.health.domain_logic.flag_models import BASELINE_DAYS, WEARABLE_METRICS


def average(values: Sequence[float]) -> float:
    """Mean rounded to one decimal place; 0.0 for an empty sequence.

    ``math.fsum`` keeps the sum exact, so the result does not depend on
    input order.
    """
    if not values:
        return 0.0
    return round(math.fsum(values) / len(values), 1)


def latest_distinct_days(
    logs: Iterable[Mapping[str, Any]], n: int = BASELINE_DAYS
) -> list[Mapping[str, Any]]:
    """Dedupe logs by date (later entries win), oldest first, keep the last ``n``."""
    by_date: dict[str, Mapping[str, Any]] = {}
    for log in logs:
        by_date[log["date"]] = log
    ordered = [by_date[d] for d in sorted(by_date)]
    return ordered[-n:] if n > 0 else []


def compute_baselines(logs: Sequence[Mapping[str, Any]]) -> dict[str, float]:
    """Average sleep, RHR and HRV independently over the given logs."""
    return {
        f"{metric}_baseline": average([log[metric] for log in logs])
        for metric in WEARABLE_METRICS
    }
