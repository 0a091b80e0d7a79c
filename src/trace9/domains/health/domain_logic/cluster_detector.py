"""Multi-day pattern detection over recently flagged logs.

Three rules are evaluated in strict priority order, stopping at the first
match:

1. negative: the last 3 days each have symptom score >= 4 and at least
   2 of the 7 non-symptom metrics flagged RED or YELLOW
2. positive: over the last 7 days at least 80% of non-symptom flags are
   GREEN and the average symptom score is <= 2
3. stagnation: over the last 5 days at least 70% of the non-symptom
   metrics kept the exact same flag every day

Negative comes first because it is the safety signal; positive comes
before stagnation because a consistently excellent week is also "stable".

Stored flags are never trusted here. Baselines can change after a log was
written, so every log in the window is re-flagged against the user's
current targets before any rule runs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from trace9.core.storage.models import DailyLog, UserTargets
from trace9.domains.health.domain_logic.dates import shift_days, today_iso
from trace9.domains.health.domain_logic.flag_engine import apply_flags
from trace9.domains.health.domain_logic.flag_models import (
    LOOKBACK_DAYS,
    METRIC_DISPLAY_NAMES,
    NEGATIVE_FALLBACK_HYPOTHESIS,
    NEGATIVE_MIN_FLAGGED_METRICS,
    NEGATIVE_MIN_SYMPTOM,
    NEGATIVE_WINDOW,
    PATTERN_METRICS,
    POSITIVE_HYPOTHESIS,
    POSITIVE_MAX_AVG_SYMPTOM,
    POSITIVE_MIN_GREEN_RATIO,
    POSITIVE_WINDOW,
    STAGNATION_HYPOTHESIS,
    STAGNATION_MIN_STABLE_RATIO,
    STAGNATION_WINDOW,
    ClusterResult,
    Flag,
)
from trace9.domains.health.store import HealthStore

logger = logging.getLogger(__name__)

_OFF_TARGET = (Flag.RED, Flag.YELLOW)


def reflag_logs(
    logs: Iterable[DailyLog | Mapping[str, Any]],
    targets: UserTargets,
) -> list[dict[str, Any]]:
    """Recompute every log's flags from its raw values against ``targets``.

    Returns plain dicts sorted oldest first.
    """
    flagged = []
    for log in logs:
        raw = log.raw_values() if isinstance(log, DailyLog) else dict(log)
        raw.update(apply_flags(raw, targets))
        flagged.append(raw)
    flagged.sort(key=lambda entry: entry["date"])
    return flagged


def evaluate_window(logs: Sequence[Mapping[str, Any]]) -> ClusterResult:
    """Run the three rules over flagged logs sorted oldest first."""
    if not logs:
        return ClusterResult()
    return (
        _detect_negative(logs)
        or _detect_positive(logs)
        or _detect_stagnation(logs)
        or ClusterResult()
    )


async def detect_clusters(
    store: HealthStore,
    user_id: str,
    window_days: int = NEGATIVE_WINDOW,
    end_date: str | None = None,
) -> ClusterResult:
    """Scan the user's recent history for a pattern.

    Read-only and advisory: a user without targets, or with no logs in the
    window, simply yields an empty result.

    Args:
        store: Storage collaborator.
        user_id: Whose logs to scan.
        window_days: Days of history the caller cares about. The lookback
            never goes below 7 days since the positive rule needs a week.
        end_date: Last day of the window (inclusive); defaults to today (UTC).
    """
    targets = await store.get_user_targets(user_id)
    if targets is None:
        return ClusterResult()

    end = end_date or today_iso()
    lookback = max(window_days, LOOKBACK_DAYS)
    stored = await store.get_daily_logs(user_id, shift_days(end, -lookback), end)
    logs = reflag_logs(stored, targets)

    result = evaluate_window(logs)
    logger.debug(
        "Pattern scan for user %s ending %s over %d logs: mode=%s",
        user_id,
        end,
        len(logs),
        result.mode,
    )
    return result


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _off_target_count(log: Mapping[str, Any]) -> int:
    return sum(1 for metric in PATTERN_METRICS if log[f"{metric}_flag"] in _OFF_TARGET)


def _detect_negative(logs: Sequence[Mapping[str, Any]]) -> ClusterResult | None:
    if len(logs) < NEGATIVE_WINDOW:
        return None
    recent = logs[-NEGATIVE_WINDOW:]

    for log in recent:
        if log["symptom_score"] < NEGATIVE_MIN_SYMPTOM:
            return None
        if _off_target_count(log) < NEGATIVE_MIN_FLAGGED_METRICS:
            return None

    implicated = [
        metric
        for metric in PATTERN_METRICS
        if any(log[f"{metric}_flag"] == Flag.RED for log in recent)
    ]
    if not implicated:
        implicated = [
            metric
            for metric in PATTERN_METRICS
            if any(log[f"{metric}_flag"] in _OFF_TARGET for log in recent)
        ]

    return ClusterResult(
        mode="negative",
        clusters=[["symptom", *implicated]],
        hypothesis=negative_hypothesis(implicated),
    )


def _detect_positive(logs: Sequence[Mapping[str, Any]]) -> ClusterResult | None:
    if len(logs) < POSITIVE_WINDOW:
        return None
    recent = logs[-POSITIVE_WINDOW:]

    green = sum(
        1 for log in recent for metric in PATTERN_METRICS if log[f"{metric}_flag"] == Flag.GREEN
    )
    green_ratio = green / (POSITIVE_WINDOW * len(PATTERN_METRICS))
    avg_symptom = sum(log["symptom_score"] for log in recent) / POSITIVE_WINDOW

    if green_ratio >= POSITIVE_MIN_GREEN_RATIO and avg_symptom <= POSITIVE_MAX_AVG_SYMPTOM:
        return ClusterResult(mode="positive", clusters=[], hypothesis=POSITIVE_HYPOTHESIS)
    return None


def _detect_stagnation(logs: Sequence[Mapping[str, Any]]) -> ClusterResult | None:
    if len(logs) < STAGNATION_WINDOW:
        return None
    recent = logs[-STAGNATION_WINDOW:]

    stable = 0
    for metric in PATTERN_METRICS:
        key = f"{metric}_flag"
        first = recent[0][key]
        if all(log[key] == first for log in recent):
            stable += 1

    if stable / len(PATTERN_METRICS) >= STAGNATION_MIN_STABLE_RATIO:
        return ClusterResult(mode="stagnation", clusters=[], hypothesis=STAGNATION_HYPOTHESIS)
    return None


def negative_hypothesis(metrics: Sequence[str]) -> str:
    """Name the implicated metrics; falls back to a generic prompt when none."""
    if not metrics:
        return NEGATIVE_FALLBACK_HYPOTHESIS
    names = ", ".join(METRIC_DISPLAY_NAMES.get(m, m) for m in metrics)
    return f"Your symptoms correlate with off-target {names}. Try improving these areas."
