"""Deterministic flagging: raw metric value -> RED / YELLOW / GREEN.

Wearables (sleep, RHR, HRV) compare against the user's 7-day baseline,
manual inputs compare against the user's targets, and the symptom flag
depends on severity alone. All functions are pure and total over finite
numbers; input ranges are validated upstream.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from trace9.core.storage.models import UserTargets
from trace9.domains.health.domain_logic.flag_models import (
    DEVIATION_EPSILON,
    FALLBACK_BASELINES,
    MANUAL_GREEN_PCT,
    MANUAL_METRICS,
    MANUAL_YELLOW_PCT,
    SYMPTOM_RED_SEVERITY,
    WEARABLE_METRICS,
    WEARABLE_RED_DEVIATION,
    WEARABLE_YELLOW_DEVIATION,
    Flag,
)


def flag_wearable(value: float, baseline: float | None, kind: str) -> Flag:
    """Flag a wearable reading against its baseline.

    RHR is lower-is-better; sleep and HRV are higher-is-better. A missing
    or zero baseline is never enough signal for RED or GREEN.
    """
    if baseline is None or baseline == 0:
        return Flag.YELLOW

    if kind == "rhr":
        if value <= baseline:
            return Flag.GREEN
        deviation = (value - baseline) / baseline
    else:
        if value >= baseline:
            return Flag.GREEN
        deviation = (baseline - value) / baseline

    if deviation + DEVIATION_EPSILON >= WEARABLE_RED_DEVIATION:
        return Flag.RED
    if deviation + DEVIATION_EPSILON >= WEARABLE_YELLOW_DEVIATION:
        return Flag.YELLOW
    return Flag.GREEN


def flag_manual(value: float, target: float | None) -> Flag:
    """Flag a manual input by the percentage of its target reached."""
    if not target:
        return Flag.YELLOW

    percentage = value / target * 100
    if percentage >= MANUAL_GREEN_PCT:
        return Flag.GREEN
    if percentage >= MANUAL_YELLOW_PCT:
        return Flag.YELLOW
    return Flag.RED


def flag_symptom(severity: int) -> Flag:
    """0 is GREEN, 1-4 YELLOW, 5 and above RED."""
    if severity <= 0:
        return Flag.GREEN
    if severity < SYMPTOM_RED_SEVERITY:
        return Flag.YELLOW
    return Flag.RED


def wearable_baselines(targets: UserTargets) -> dict[str, float | None]:
    """Baselines to flag against: the user's own once complete, else population averages."""
    if targets.is_baseline_complete:
        return {
            "sleep": targets.sleep_baseline,
            "rhr": targets.rhr_baseline,
            "hrv": targets.hrv_baseline,
        }
    return dict(FALLBACK_BASELINES)


def apply_flags(log: Mapping[str, Any], targets: UserTargets) -> dict[str, Flag]:
    """Compute all eight ``<metric>_flag`` values for one day's raw values."""
    baselines = wearable_baselines(targets)
    flags: dict[str, Flag] = {}

    for metric in WEARABLE_METRICS:
        flags[f"{metric}_flag"] = flag_wearable(log[metric], baselines[metric], metric)

    for metric in MANUAL_METRICS:
        flags[f"{metric}_flag"] = flag_manual(log[metric], getattr(targets, f"{metric}_target"))

    flags["symptom_flag"] = flag_symptom(log["symptom_score"])
    return flags
