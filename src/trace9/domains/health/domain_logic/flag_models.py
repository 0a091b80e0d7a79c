"""Flag types and domain constants for the insight pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Flag(str, Enum):
    """Classified status of one metric on one day."""

    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

WEARABLE_METRICS = ("sleep", "rhr", "hrv")
MANUAL_METRICS = ("protein", "gut", "sun", "exercise")

# The seven non-symptom metrics every pattern rule looks at, in canonical order
PATTERN_METRICS = WEARABLE_METRICS + MANUAL_METRICS

METRIC_DISPLAY_NAMES = {
    "sleep": "Sleep",
    "rhr": "Resting Heart Rate",
    "hrv": "Heart Rate Variability",
    "protein": "Protein Intake",
    "gut": "Gut Health",
    "sun": "Sun Exposure",
    "exercise": "Exercise",
}

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

# Wearables: fractional deviation from baseline in the "worse" direction
WEARABLE_RED_DEVIATION = 0.15
WEARABLE_YELLOW_DEVIATION = 0.08
DEVIATION_EPSILON = 1e-9

# Manual inputs: percent of target reached
MANUAL_GREEN_PCT = 100
MANUAL_YELLOW_PCT = 80

# Symptom severity at or above which the day is RED
SYMPTOM_RED_SEVERITY = 5

# Population averages used until the user's own 7-day baseline exists
FALLBACK_BASELINES = {
    "sleep": 7.5,  # hours
    "rhr": 65.0,  # bpm
    "hrv": 50.0,  # ms
}

# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

BASELINE_DAYS = 7
LOOKBACK_DAYS = 7  # history window offset: [date - 7 days, date]
INTERVENTION_DAYS = 7

NEGATIVE_WINDOW = 3
NEGATIVE_MIN_SYMPTOM = 4
NEGATIVE_MIN_FLAGGED_METRICS = 2

POSITIVE_WINDOW = 7
POSITIVE_MIN_GREEN_RATIO = 0.8
POSITIVE_MAX_AVG_SYMPTOM = 2

STAGNATION_WINDOW = 5
STAGNATION_MIN_STABLE_RATIO = 0.7

# ---------------------------------------------------------------------------
# Hypotheses
# ---------------------------------------------------------------------------

POSITIVE_HYPOTHESIS = (
    "Great work! Your habits have been consistently on target this week. Keep it up!"
)
STAGNATION_HYPOTHESIS = (
    "Your patterns have plateaued. Consider adjusting one habit to find new gains."
)
NEGATIVE_FALLBACK_HYPOTHESIS = (
    "Your symptoms have been high for several days alongside off-target metrics. "
    "Try improving one area this week."
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ClusterResult:
    """Outcome of a pattern scan: detected mode, implicated metrics, hypothesis."""

    mode: str | None = None  # 'negative' | 'positive' | 'stagnation'
    clusters: list[list[str]] = field(default_factory=list)
    hypothesis: str | None = None

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "clusters": [list(c) for c in self.clusters],
            "hypothesis": self.hypothesis,
        }
