"""Tests for intervention creation, the lock state machine and check-in."""

from __future__ import annotations

import asyncio
import logging

import pytest

from trace9.core.storage.models import DailyLog, Intervention, UserTargets
from trace9.domains.health.domain_logic.dates import shift_days
from trace9.domains.health.domain_logic.interventions import (
    CheckInError,
    DuplicateHypothesisError,
    InterventionLockedError,
    InterventionLockState,
    InterventionNotFoundError,
    OverlappingInterventionError,
    check_in,
    create_intervention_if_needed,
    create_manual_intervention,
    lock_state,
    normalize_hypothesis,
    ranges_overlap,
)
from trace9.domains.health.domain_logic.log_processor import TargetsNotFoundError
from trace9.domains.health.domain_logic.validation import ValidationError


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


NEGATIVE_HYPOTHESIS = (
    "Your symptoms correlate with off-target Sleep, Protein Intake. Try improving these areas."
)


def _seed_negative_days(store, user_id: str, end_date: str) -> None:
    """Three days of high symptoms with short sleep and low protein."""
    for i in range(3):
        date = shift_days(end_date, -i)
        store.logs[f"{user_id}-{date}"] = DailyLog(
            id=f"{user_id}-{date}",
            user_id=user_id,
            date=date,
            sleep=6.0,
            rhr=65,
            hrv=50.0,
            protein=70,
            gut=5,
            sun=5,
            exercise=5,
            symptom_score=4,
        )


def _add_intervention(store, user_id="u1", hypothesis="Walk daily", start="2026-03-01",
                      end="2026-03-08", result=None) -> Intervention:
    intervention = Intervention(
        id=f"i-{len(store.interventions) + 1}",
        user_id=user_id,
        hypothesis_text=hypothesis,
        start_date=start,
        end_date=end,
        result=result,
    )
    store.interventions[intervention.id] = intervention
    return intervention


@pytest.fixture
def store(fake_store):
    fake_store.targets["u1"] = UserTargets(id="t1", user_id="u1")
    return fake_store


# ---------------------------------------------------------------------------
# Guards and state
# ---------------------------------------------------------------------------

class TestGuards:
    def test_normalize_hypothesis(self):
        assert normalize_hypothesis("  Sleep MORE \n") == normalize_hypothesis("sleep more")
        assert normalize_hypothesis(None) == ""

    @pytest.mark.parametrize(
        "a, b, expected",
        [
            (("2026-03-01", "2026-03-08"), ("2026-03-08", "2026-03-15"), True),
            (("2026-03-01", "2026-03-08"), ("2026-03-09", "2026-03-16"), False),
            (("2026-03-10", "2026-03-17"), ("2026-03-01", "2026-03-09"), False),
            (("2026-03-01", "2026-03-31"), ("2026-03-10", "2026-03-12"), True),
        ],
    )
    def test_inclusive_overlap(self, a, b, expected):
        assert ranges_overlap(*a, *b) is expected


class TestLockState:
    def test_unlocked(self):
        assert lock_state(UserTargets(id="t", user_id="u"), None) is InterventionLockState.UNLOCKED

    def test_locked(self):
        targets = UserTargets(id="t", user_id="u", active_intervention_id="i-1")
        live = Intervention("i-1", "u", "h", "2026-03-01", "2026-03-08")
        assert lock_state(targets, live) is InterventionLockState.LOCKED

    def test_terminal(self):
        targets = UserTargets(id="t", user_id="u", active_intervention_id="i-1")
        done = Intervention("i-1", "u", "h", "2026-03-01", "2026-03-08", result="Yes")
        assert lock_state(targets, done) is InterventionLockState.TERMINAL

    def test_dangling_pointer_still_locks(self):
        targets = UserTargets(id="t", user_id="u", active_intervention_id="gone")
        assert lock_state(targets, None) is InterventionLockState.LOCKED


# ---------------------------------------------------------------------------
# Auto creation
# ---------------------------------------------------------------------------

class TestAutoCreation:
    def test_creates_and_locks_on_negative_pattern(self, store):
        _seed_negative_days(store, "u1", "2026-03-10")
        created = _run(create_intervention_if_needed(store, "u1", "2026-03-10"))

        assert created is not None
        assert created.start_date == "2026-03-10"
        assert created.end_date == "2026-03-17"
        assert created.hypothesis_text == NEGATIVE_HYPOTHESIS
        assert store.targets["u1"].active_intervention_id == created.id

    def test_end_date_is_calendar_arithmetic(self, store):
        _seed_negative_days(store, "u1", "2026-02-26")
        created = _run(create_intervention_if_needed(store, "u1", "2026-02-26"))
        assert created.end_date == "2026-03-05"

    def test_no_targets_is_noop(self, fake_store):
        _seed_negative_days(fake_store, "u1", "2026-03-10")
        assert _run(create_intervention_if_needed(fake_store, "u1", "2026-03-10")) is None
        assert fake_store.interventions == {}

    def test_locked_user_skips_detection(self, store):
        store.targets["u1"].active_intervention_id = "i-other"
        _seed_negative_days(store, "u1", "2026-03-10")
        assert _run(create_intervention_if_needed(store, "u1", "2026-03-10")) is None
        assert "get_daily_logs" not in store.calls

    def test_no_pattern_is_noop(self, store):
        assert _run(create_intervention_if_needed(store, "u1", "2026-03-10")) is None
        assert store.interventions == {}

    def test_duplicate_of_past_hypothesis_skipped(self, store):
        _add_intervention(
            store,
            hypothesis=f"  {NEGATIVE_HYPOTHESIS.upper()} ",
            start="2026-01-01",
            end="2026-01-08",
            result="No",
        )
        _seed_negative_days(store, "u1", "2026-03-10")
        assert _run(create_intervention_if_needed(store, "u1", "2026-03-10")) is None
        assert len(store.interventions) == 1

    def test_overlap_with_any_live_intervention_skipped(self, store):
        # Not referenced by the lock pointer, still blocks auto creation
        _add_intervention(store, start="2026-03-15", end="2026-03-22")
        _seed_negative_days(store, "u1", "2026-03-10")
        assert _run(create_intervention_if_needed(store, "u1", "2026-03-10")) is None

    def test_overlap_with_completed_intervention_allowed(self, store):
        _add_intervention(store, start="2026-03-08", end="2026-03-15", result="Partial")
        _seed_negative_days(store, "u1", "2026-03-10")
        assert _run(create_intervention_if_needed(store, "u1", "2026-03-10")) is not None

    def test_storage_failure_is_swallowed(self, store, caplog):
        store.fail_on.add("create_intervention")
        _seed_negative_days(store, "u1", "2026-03-10")
        with caplog.at_level(logging.ERROR):
            assert _run(create_intervention_if_needed(store, "u1", "2026-03-10")) is None
        assert "Failed to create intervention" in caplog.text
        assert store.targets["u1"].active_intervention_id is None

    def test_concurrent_calls_create_one(self, store):
        _seed_negative_days(store, "u1", "2026-03-10")

        async def _both():
            return await asyncio.gather(
                create_intervention_if_needed(store, "u1", "2026-03-10"),
                create_intervention_if_needed(store, "u1", "2026-03-10"),
            )

        results = _run(_both())
        assert sum(r is not None for r in results) == 1
        assert len(store.interventions) == 1


# ---------------------------------------------------------------------------
# Manual creation
# ---------------------------------------------------------------------------

class TestManualCreation:
    def test_creates_with_default_end_and_locks(self, store):
        created = _run(create_manual_intervention(store, "u1", " Cut caffeine ", "2026-03-01"))
        assert created.hypothesis_text == "Cut caffeine"
        assert created.end_date == "2026-03-08"
        assert store.targets["u1"].active_intervention_id == created.id

    def test_explicit_end_date(self, store):
        created = _run(
            create_manual_intervention(store, "u1", "Cut caffeine", "2026-03-01", "2026-03-04")
        )
        assert created.end_date == "2026-03-04"

    def test_duplicate_hypothesis_rejected(self, store):
        _add_intervention(store, hypothesis="Cut caffeine", result="Yes")
        with pytest.raises(DuplicateHypothesisError, match="same hypothesis"):
            _run(create_manual_intervention(store, "u1", "  CUT Caffeine\t", "2026-05-01"))

    def test_overlap_with_active_rejected(self, store):
        active = _add_intervention(store, start="2026-03-01", end="2026-03-08")
        store.targets["u1"].active_intervention_id = active.id
        with pytest.raises(OverlappingInterventionError, match="overlapping"):
            _run(create_manual_intervention(store, "u1", "Stretch", "2026-03-08"))

    def test_locked_rejects_non_overlapping(self, store):
        active = _add_intervention(store, start="2026-03-01", end="2026-03-08")
        store.targets["u1"].active_intervention_id = active.id
        with pytest.raises(InterventionLockedError):
            _run(create_manual_intervention(store, "u1", "Stretch", "2026-04-01"))

    def test_duplicate_checked_before_overlap(self, store):
        active = _add_intervention(store, hypothesis="Stretch")
        store.targets["u1"].active_intervention_id = active.id
        with pytest.raises(DuplicateHypothesisError):
            _run(create_manual_intervention(store, "u1", "stretch", "2026-03-02"))

    def test_stale_pointer_to_completed_allows_creation(self, store):
        done = _add_intervention(store, result="No")
        store.targets["u1"].active_intervention_id = done.id
        created = _run(create_manual_intervention(store, "u1", "Stretch", "2026-03-03"))
        assert store.targets["u1"].active_intervention_id == created.id

    def test_overlap_scoped_to_active_only(self, store):
        # Two live interventions without a lock pointer; the older one overlaps
        # the request but only the most recent one is consulted.
        _add_intervention(store, hypothesis="Old", start="2026-03-01", end="2026-03-08")
        _add_intervention(store, hypothesis="New", start="2026-04-01", end="2026-04-08")
        created = _run(create_manual_intervention(store, "u1", "Stretch", "2026-03-05"))
        assert created.start_date == "2026-03-05"

    def test_missing_targets(self, fake_store):
        with pytest.raises(TargetsNotFoundError):
            _run(create_manual_intervention(fake_store, "ghost", "Stretch", "2026-03-01"))

    @pytest.mark.parametrize(
        "hypothesis, start, end",
        [
            ("   ", "2026-03-01", None),
            ("Stretch", "2026-02-30", None),
            ("Stretch", "03/01/2026", None),
            ("Stretch", "2026-03-08", "2026-03-01"),
        ],
    )
    def test_invalid_input(self, store, hypothesis, start, end):
        with pytest.raises(ValidationError):
            _run(create_manual_intervention(store, "u1", hypothesis, start, end))


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------

class TestCheckIn:
    @pytest.fixture
    def active(self, store):
        intervention = _add_intervention(store, start="2026-03-01", end="2026-03-08")
        store.targets["u1"].active_intervention_id = intervention.id
        return intervention

    def test_before_end_rejected(self, store, active):
        with pytest.raises(CheckInError, match="still running"):
            _run(check_in(store, "u1", active.id, "Yes", today="2026-03-07"))
        assert store.interventions[active.id].result is None

    @pytest.mark.parametrize("result", ["yes", "Maybe", "", "No "])
    def test_invalid_result_rejected(self, store, active, result):
        with pytest.raises(CheckInError, match="must be one of"):
            _run(check_in(store, "u1", active.id, result, today="2026-03-09"))

    @pytest.mark.parametrize("result", ["Yes", "No", "Partial"])
    def test_valid_check_in_unlocks(self, store, active, result):
        updated = _run(check_in(store, "u1", active.id, result, today="2026-03-08"))
        assert updated.result == result
        assert updated.completed_at
        assert store.targets["u1"].active_intervention_id is None

    def test_lock_held_by_other_intervention_untouched(self, store, active):
        other = _add_intervention(store, hypothesis="Other", start="2026-02-01", end="2026-02-08")
        _run(check_in(store, "u1", other.id, "No", today="2026-03-09"))
        assert store.targets["u1"].active_intervention_id == active.id

    def test_already_completed_rejected(self, store, active):
        _run(check_in(store, "u1", active.id, "Yes", today="2026-03-09"))
        with pytest.raises(CheckInError, match="already completed"):
            _run(check_in(store, "u1", active.id, "No", today="2026-03-10"))

    def test_unknown_intervention(self, store):
        with pytest.raises(InterventionNotFoundError):
            _run(check_in(store, "u1", "missing", "Yes", today="2026-03-09"))

    def test_other_users_intervention(self, store, active):
        with pytest.raises(InterventionNotFoundError):
            _run(check_in(store, "u2", active.id, "Yes", today="2026-03-09"))

    def test_create_again_after_check_in(self, store, active):
        _run(check_in(store, "u1", active.id, "Partial", today="2026-03-09"))
        created = _run(create_manual_intervention(store, "u1", "Stretch", "2026-03-09"))
        assert store.targets["u1"].active_intervention_id == created.id
