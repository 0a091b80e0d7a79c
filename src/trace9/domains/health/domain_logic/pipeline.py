"""Daily log write pipeline.

validate -> process (baseline + flags) -> upsert by date -> backfill flags
when the baseline was just completed -> open an intervention if a negative
pattern shows up (best effort).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from trace9.core.storage.models import DailyLog, Intervention, UserTargets
from trace9.domains.health.domain_logic.dates import shift_days
from trace9.domains.health.domain_logic.flag_engine import apply_flags
from trace9.domains.health.domain_logic.flag_models import LOOKBACK_DAYS
from trace9.domains.health.domain_logic.interventions import (
    create_intervention_if_needed,
    user_locks,
)
from trace9.domains.health.domain_logic.log_processor import TargetsNotFoundError, process_log
from trace9.domains.health.domain_logic.validation import validate_daily_log, validate_date
from trace9.domains.health.store import HealthStore

logger = logging.getLogger(__name__)


@dataclass
class LogOutcome:
    """Result of recording one day."""

    log: DailyLog
    intervention: Intervention | None = None
    created: bool = True
    baseline_completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "log": self.log.to_dict(),
            "created": self.created,
            "baseline_completed": self.baseline_completed,
            "intervention": self.intervention.to_dict() if self.intervention else None,
        }


async def ensure_targets(
    store: HealthStore,
    user_id: str,
    defaults: Mapping[str, Any] | None = None,
) -> UserTargets:
    """Return the user's targets, creating them from ``defaults`` on first access."""
    targets = await store.get_user_targets(user_id)
    if targets is not None:
        return targets
    async with user_locks.hold(user_id):
        targets = await store.get_user_targets(user_id)
        if targets is None:
            targets = await store.create_user_targets(user_id, **dict(defaults or {}))
            logger.info("Initialized default targets for user %s", user_id)
    return targets


async def record_daily_log(
    store: HealthStore,
    user_id: str,
    payload: Mapping[str, Any],
) -> LogOutcome:
    """Validate, flag and persist one day's log.

    Posting a date that already has a log updates it; fields left out of the
    payload keep their stored values.

    Raises:
        ValidationError: If the merged payload is malformed.
        TargetsNotFoundError: If the user has no targets.
    """
    date = validate_date(payload.get("date"))
    existing = await store.get_daily_log(user_id, date)

    merged: dict[str, Any] = existing.raw_values() if existing is not None else {}
    merged.update({k: v for k, v in payload.items() if v is not None})
    clean = validate_daily_log(merged)

    before = await store.get_user_targets(user_id)
    if before is None:
        raise TargetsNotFoundError(user_id)

    flagged = await process_log(store, user_id, clean)
    if existing is not None:
        log = await store.update_daily_log(existing.id, flagged)
    else:
        log = await store.create_daily_log(user_id, flagged)

    baseline_completed = False
    if not before.is_baseline_complete:
        after = await store.get_user_targets(user_id)
        if after is not None and after.is_baseline_complete:
            baseline_completed = True
            await refresh_window_flags(store, user_id, date, after)

    intervention = await create_intervention_if_needed(store, user_id, date)
    return LogOutcome(
        log=log,
        intervention=intervention,
        created=existing is None,
        baseline_completed=baseline_completed,
    )


async def refresh_window_flags(
    store: HealthStore,
    user_id: str,
    end_date: str,
    targets: UserTargets,
) -> int:
    """Re-flag stored logs in the trailing window against ``targets``.

    Logs written before the baseline existed were flagged against population
    defaults. Returns how many logs changed.
    """
    stored = await store.get_daily_logs(user_id, shift_days(end_date, -LOOKBACK_DAYS), end_date)
    changed = 0
    for log in stored:
        fresh = {name: str(flag) for name, flag in apply_flags(log.raw_values(), targets).items()}
        if fresh != log.flags():
            await store.update_daily_log(log.id, fresh)
            changed += 1
    if changed:
        logger.info("Backfilled flags on %d logs for user %s", changed, user_id)
    return changed


async def remove_daily_log(store: HealthStore, user_id: str, date: str) -> bool:
    """Delete the user's log for ``date``. Baselines are not recomputed."""
    validate_date(date)
    log = await store.get_daily_log(user_id, date)
    if log is None:
        return False
    return await store.delete_daily_log(log.id)
