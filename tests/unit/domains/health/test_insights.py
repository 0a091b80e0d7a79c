"""Tests for the insight state summary."""

from __future__ import annotations

import asyncio

from trace9.core.storage.models import DailyLog, Intervention, UserTargets
from trace9.domains.health.domain_logic.dates import shift_days
from trace9.domains.health.domain_logic.flag_models import POSITIVE_HYPOTHESIS
from trace9.domains.health.domain_logic.insights import get_insights


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _add_log(store, date: str, **overrides) -> None:
    values = dict(
        sleep=7.5, rhr=65, hrv=50.0, protein=100, gut=5, sun=5, exercise=5, symptom_score=0
    )
    values.update(overrides)
    store.logs[date] = DailyLog(id=date, user_id="u1", date=date, **values)


def _complete_targets(**overrides) -> UserTargets:
    fields = dict(
        sleep_baseline=7.5,
        rhr_baseline=65.0,
        hrv_baseline=50.0,
        is_baseline_complete=True,
        onboarding_complete=True,
    )
    fields.update(overrides)
    return UserTargets(id="t1", user_id="u1", **fields)


class TestProvisional:
    def test_no_targets(self, fake_store):
        insights = _run(get_insights(fake_store, "u1"))
        assert insights["state"] == "provisional"
        assert insights["days_logged"] == 0

    def test_counts_logged_days(self, fake_store):
        fake_store.targets["u1"] = UserTargets(id="t1", user_id="u1")
        for i in range(3):
            _add_log(fake_store, shift_days("2026-03-01", i))
        insights = _run(get_insights(fake_store, "u1"))
        assert insights["state"] == "provisional"
        assert insights["message"] == "Gathering data: 3 of 7 days logged"


class TestLocked:
    def test_live_intervention_locks(self, fake_store):
        fake_store.targets["u1"] = _complete_targets(active_intervention_id="i-1")
        fake_store.interventions["i-1"] = Intervention(
            "i-1", "u1", "Sleep more", "2026-03-01", "2026-03-08"
        )
        insights = _run(get_insights(fake_store, "u1"))
        assert insights["state"] == "locked"
        assert insights["active_intervention_id"] == "i-1"
        assert "hypothesis" not in insights

    def test_dangling_pointer_locks(self, fake_store):
        fake_store.targets["u1"] = _complete_targets(active_intervention_id="i-locked-1")
        assert _run(get_insights(fake_store, "u1"))["state"] == "locked"

    def test_completed_pointer_does_not_lock(self, fake_store):
        fake_store.targets["u1"] = _complete_targets(active_intervention_id="i-1")
        fake_store.interventions["i-1"] = Intervention(
            "i-1", "u1", "Sleep more", "2026-03-01", "2026-03-08", result="Yes"
        )
        assert _run(get_insights(fake_store, "u1"))["state"] != "locked"


class TestPatterns:
    def test_positive_week_requires_action(self, fake_store):
        fake_store.targets["u1"] = _complete_targets()
        for i in range(7):
            _add_log(fake_store, shift_days("2026-03-01", i), symptom_score=1)
        insights = _run(get_insights(fake_store, "u1"))
        assert insights["state"] == "action-required"
        assert insights["mode"] == "positive"
        assert insights["hypothesis"] == POSITIVE_HYPOTHESIS
        assert insights["end_date"] == "2026-03-07"

    def test_nothing_to_act_on_is_stable(self, fake_store):
        fake_store.targets["u1"] = _complete_targets()
        for i in range(5):
            if i % 2:
                _add_log(fake_store, shift_days("2026-03-01", i), sleep=6.0, rhr=80, hrv=40.0)
            else:
                _add_log(fake_store, shift_days("2026-03-01", i))
        insights = _run(get_insights(fake_store, "u1"))
        assert insights["state"] == "stable"
        assert insights["mode"] is None

    def test_explicit_end_date(self, fake_store):
        fake_store.targets["u1"] = _complete_targets()
        for i in range(7):
            _add_log(fake_store, shift_days("2026-03-01", i), symptom_score=1)
        # Window ending before any log
        insights = _run(get_insights(fake_store, "u1", "2026-02-01"))
        assert insights["state"] == "stable"

    def test_no_logs_after_baseline_is_stable(self, fake_store):
        fake_store.targets["u1"] = _complete_targets()
        assert _run(get_insights(fake_store, "u1"))["state"] == "stable"
