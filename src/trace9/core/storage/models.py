"""Data models for the Trace-9 persistence layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

# Raw metric columns, in display order
RAW_FIELDS = (
    "sleep",
    "rhr",
    "hrv",
    "protein",
    "gut",
    "sun",
    "exercise",
    "symptom_score",
)

FLAG_FIELDS = (
    "sleep_flag",
    "rhr_flag",
    "hrv_flag",
    "protein_flag",
    "gut_flag",
    "sun_flag",
    "exercise_flag",
    "symptom_flag",
)

TARGET_FIELDS = (
    "protein_target",
    "gut_target",
    "sun_target",
    "exercise_target",
    "sleep_baseline",
    "rhr_baseline",
    "hrv_baseline",
    "is_baseline_complete",
    "onboarding_complete",
    "active_intervention_id",
)

INTERVENTION_RESULTS = ("Yes", "No", "Partial")


@dataclass
class UserTargets:
    """Manual targets, wearable baselines and the intervention lock for one user."""

    id: str
    user_id: str
    protein_target: int = 100
    gut_target: int = 5
    sun_target: int = 5
    exercise_target: int = 5

    # 7-day rolling means, populated once the baseline is complete
    sleep_baseline: float | None = None
    rhr_baseline: float | None = None
    hrv_baseline: float | None = None

    is_baseline_complete: bool = False
    onboarding_complete: bool = False
    active_intervention_id: str | None = None

    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DailyLog:
    """One day of raw metrics plus their derived RED/YELLOW/GREEN flags."""

    id: str
    user_id: str
    date: str  # YYYY-MM-DD

    sleep: float
    rhr: int
    hrv: float
    protein: int
    gut: int
    sun: int
    exercise: int
    symptom_score: int
    symptom_name: str | None = None  # encrypted at rest

    sleep_flag: str = ""
    rhr_flag: str = ""
    hrv_flag: str = ""
    protein_flag: str = ""
    gut_flag: str = ""
    sun_flag: str = ""
    exercise_flag: str = ""
    symptom_flag: str = ""

    created_at: str = ""

    def raw_values(self) -> dict[str, Any]:
        """Return the raw metric values (no flags, no identifiers)."""
        values = {name: getattr(self, name) for name in RAW_FIELDS}
        values["date"] = self.date
        values["symptom_name"] = self.symptom_name
        return values

    def flags(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in FLAG_FIELDS}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Intervention:
    """A 7-day experiment testing one hypothesis."""

    id: str
    user_id: str
    hypothesis_text: str
    start_date: str  # YYYY-MM-DD
    end_date: str  # YYYY-MM-DD, start + 7 days for auto-created interventions
    result: str | None = None  # 'Yes' | 'No' | 'Partial' once terminal
    completed_at: str | None = None
    created_at: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.result is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
