"""User-facing insight state derived from baseline, lock and pattern scan."""

from __future__ import annotations

import logging
from typing import Any

from trace9.domains.health.domain_logic.cluster_detector import detect_clusters
from trace9.domains.health.domain_logic.flag_models import BASELINE_DAYS, LOOKBACK_DAYS
from trace9.domains.health.domain_logic.interventions import (
    InterventionLockState,
    current_lock_state,
)
from trace9.domains.health.store import HealthStore

logger = logging.getLogger(__name__)

PROVISIONAL = "provisional"
LOCKED = "locked"
ACTION_REQUIRED = "action-required"
STABLE = "stable"


async def get_insights(
    store: HealthStore,
    user_id: str,
    end_date: str | None = None,
) -> dict[str, Any]:
    """Summarize where the user stands.

    States:
        provisional:     fewer than 7 days logged, no baseline yet
        locked:          an intervention is running; no new hypothesis
        action-required: the pattern scan found something
        stable:          nothing to act on

    The scan window ends at ``end_date``, or at the user's most recent log
    when not given.
    """
    targets = await store.get_user_targets(user_id)
    if targets is None or not targets.is_baseline_complete:
        logs = await store.get_daily_logs(user_id)
        days = min(len({log.date for log in logs}), BASELINE_DAYS)
        return {
            "state": PROVISIONAL,
            "days_logged": days,
            "message": f"Gathering data: {days} of {BASELINE_DAYS} days logged",
        }

    if await current_lock_state(store, targets) is InterventionLockState.LOCKED:
        return {
            "state": LOCKED,
            "active_intervention_id": targets.active_intervention_id,
            "message": "An intervention is in progress; check in when it ends",
        }

    if end_date is None:
        logs = await store.get_daily_logs(user_id)
        if not logs:
            return {"state": STABLE, "mode": None, "clusters": [], "hypothesis": None}
        end_date = max(log.date for log in logs)

    result = await detect_clusters(store, user_id, LOOKBACK_DAYS, end_date)
    state = ACTION_REQUIRED if result.mode else STABLE
    logger.debug("Insights for user %s ending %s: %s", user_id, end_date, state)
    return {"state": state, "end_date": end_date, **result.to_dict()}
