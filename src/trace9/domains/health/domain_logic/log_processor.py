"""Per-write log processing: complete the baseline when possible, then flag.

``process_log`` is called once per incoming (new or updated) day. It reads
the trailing window through the store, may persist the user's baseline the
first time seven distinct days exist, and returns the raw values merged
with all eight flags. Persisting the log itself is the caller's job.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from trace9.core.storage.models import FLAG_FIELDS
from trace9.domains.health.domain_logic.baseline import compute_baselines, latest_distinct_days
from trace9.domains.health.domain_logic.dates import shift_days
from trace9.domains.health.domain_logic.flag_engine import apply_flags
from trace9.domains.health.domain_logic.flag_models import BASELINE_DAYS, LOOKBACK_DAYS
from trace9.domains.health.store import HealthStore

logger = logging.getLogger(__name__)


class TargetsNotFoundError(Exception):
    """Raised when a log arrives for a user who has not completed onboarding."""

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"User targets not found for {user_id!r}. Please complete onboarding first."
        )
        self.user_id = user_id


async def load_window(
    store: HealthStore,
    user_id: str,
    end_date: str,
    incoming: Mapping[str, Any] | None = None,
) -> list[Mapping[str, Any]]:
    """Raw values for ``[end_date - 7 days, end_date]``, oldest first, one per date.

    When ``incoming`` is given it replaces any stored entry for its date, so
    updating a day never counts that day twice.
    """
    stored = await store.get_daily_logs(user_id, shift_days(end_date, -LOOKBACK_DAYS), end_date)
    logs: list[Mapping[str, Any]] = [log.raw_values() for log in stored]
    if incoming is not None:
        logs.append(incoming)
    return latest_distinct_days(logs, n=len(logs))


async def process_log(
    store: HealthStore,
    user_id: str,
    raw_log: Mapping[str, Any],
) -> dict[str, Any]:
    """Flag one day's raw values, completing the user's baseline if it is due.

    Args:
        store: Storage collaborator.
        user_id: Owner of the log.
        raw_log: Validated raw values including ``date``. Any flag keys
            present are ignored and recomputed.

    Returns:
        The raw values merged with the eight computed ``<metric>_flag`` fields.

    Raises:
        TargetsNotFoundError: If the user has no targets yet.
    """
    targets = await store.get_user_targets(user_id)
    if targets is None:
        raise TargetsNotFoundError(user_id)

    raw = {k: v for k, v in raw_log.items() if k not in FLAG_FIELDS}
    window = await load_window(store, user_id, raw["date"], incoming=raw)

    if not targets.is_baseline_complete and len(window) >= BASELINE_DAYS:
        baselines = compute_baselines(window[-BASELINE_DAYS:])
        updates = {**baselines, "is_baseline_complete": True, "onboarding_complete": True}
        await store.update_user_targets(user_id, updates)
        for name, value in updates.items():
            setattr(targets, name, value)
        logger.info(
            "Baseline complete for user %s: sleep=%.1f rhr=%.1f hrv=%.1f",
            user_id,
            baselines["sleep_baseline"],
            baselines["rhr_baseline"],
            baselines["hrv_baseline"],
        )

    return {**raw, **apply_flags(raw, targets)}
