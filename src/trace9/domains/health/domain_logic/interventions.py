"""Intervention lifecycle: auto creation, manual creation, and check-in.

A user's ``active_intervention_id`` is a mutual-exclusion lock. Per user the
lock is in one of three states:

* UNLOCKED: no pointer; the only state in which a new intervention may be
  created, automatically or manually.
* LOCKED: pointer set and the referenced intervention has no result.
* TERMINAL: pointer set but the referenced intervention already has a
  result; treated as unlocked for creation.

The pointer is only ever written by :func:`acquire_lock` and
:func:`release_lock`. Read-then-write sequences on a user's interventions
run under that user's :class:`UserLocks` mutex.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Sequence
from contextlib import asynccontextmanager
from enum import Enum

from trace9.core.storage.models import INTERVENTION_RESULTS, Intervention, UserTargets
from trace9.domains.health.domain_logic.cluster_detector import detect_clusters
from trace9.domains.health.domain_logic.dates import now_iso, shift_days, today_iso
from trace9.domains.health.domain_logic.flag_models import INTERVENTION_DAYS, NEGATIVE_WINDOW
from trace9.domains.health.domain_logic.log_processor import TargetsNotFoundError
from trace9.domains.health.domain_logic.validation import ValidationError, validate_date
from trace9.domains.health.store import HealthStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class InterventionError(Exception):
    """Base class for rejected intervention operations."""


class DuplicateHypothesisError(InterventionError):
    """An intervention with the same hypothesis already exists."""


class OverlappingInterventionError(InterventionError):
    """The requested dates overlap the active intervention."""


class InterventionLockedError(OverlappingInterventionError):
    """Another intervention is still in progress."""


class InterventionNotFoundError(InterventionError):
    """No intervention with that id belongs to the user."""


class CheckInError(InterventionError):
    """Check-in is not allowed (too early, bad result, or already completed)."""


# ---------------------------------------------------------------------------
# Lock state machine
# ---------------------------------------------------------------------------

class InterventionLockState(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    TERMINAL = "terminal"


def lock_state(targets: UserTargets, referenced: Intervention | None) -> InterventionLockState:
    """Classify the lock given the user's targets and the intervention they point at.

    A pointer to an intervention that cannot be found is still honoured as a
    lock; only check-in clears it.
    """
    if not targets.active_intervention_id:
        return InterventionLockState.UNLOCKED
    if referenced is not None and referenced.is_terminal:
        return InterventionLockState.TERMINAL
    return InterventionLockState.LOCKED


async def current_lock_state(store: HealthStore, targets: UserTargets) -> InterventionLockState:
    referenced = None
    if targets.active_intervention_id:
        referenced = await store.get_intervention(targets.active_intervention_id)
    return lock_state(targets, referenced)


async def acquire_lock(store: HealthStore, user_id: str, intervention_id: str) -> None:
    await store.update_user_targets(user_id, {"active_intervention_id": intervention_id})
    logger.info("User %s locked by intervention %s", user_id, intervention_id)


async def release_lock(store: HealthStore, user_id: str, intervention_id: str) -> bool:
    """Clear the pointer if, and only if, it still points at ``intervention_id``."""
    targets = await store.get_user_targets(user_id)
    if targets is None or targets.active_intervention_id != intervention_id:
        return False
    await store.update_user_targets(user_id, {"active_intervention_id": None})
    logger.info("User %s unlocked; intervention %s completed", user_id, intervention_id)
    return True


class UserLocks:
    """Per-user ``asyncio.Lock`` registry, scoped to the running event loop."""

    def __init__(self) -> None:
        self._by_loop: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, dict[str, asyncio.Lock]
        ] = weakref.WeakKeyDictionary()

    def get(self, user_id: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        locks = self._by_loop.setdefault(loop, {})
        if user_id not in locks:
            locks[user_id] = asyncio.Lock()
        return locks[user_id]

    @asynccontextmanager
    async def hold(self, user_id: str):
        async with self.get(user_id):
            yield


user_locks = UserLocks()


# ---------------------------------------------------------------------------
# Dedup / overlap guards
# ---------------------------------------------------------------------------

def normalize_hypothesis(text: str | None) -> str:
    return (text or "").strip().casefold()


def ranges_overlap(start: str, end: str, other_start: str, other_end: str) -> bool:
    """Inclusive overlap of two ``YYYY-MM-DD`` ranges."""
    return not (end < other_start or start > other_end)


def find_duplicate(existing: Sequence[Intervention], hypothesis: str) -> Intervention | None:
    wanted = normalize_hypothesis(hypothesis)
    for intervention in existing:
        current = normalize_hypothesis(intervention.hypothesis_text)
        if current and current == wanted:
            return intervention
    return None


def find_overlap(
    existing: Sequence[Intervention], start: str, end: str
) -> Intervention | None:
    """First non-terminal intervention whose range overlaps ``[start, end]``."""
    for intervention in existing:
        if intervention.is_terminal:
            continue
        if ranges_overlap(start, end, intervention.start_date, intervention.end_date):
            return intervention
    return None


# ---------------------------------------------------------------------------
# Auto creation
# ---------------------------------------------------------------------------

async def create_intervention_if_needed(
    store: HealthStore,
    user_id: str,
    date: str,
) -> Intervention | None:
    """Open an intervention when the last 3 days show a negative cluster.

    Called after the log for ``date`` has been persisted. Best effort: any
    failure is logged and swallowed so the log write itself still succeeds.

    Returns:
        The new intervention, or None when nothing was created.
    """
    try:
        async with user_locks.hold(user_id):
            return await _create_if_needed(store, user_id, date)
    except Exception:
        logger.exception("Failed to create intervention for user %s on %s", user_id, date)
        return None


async def _create_if_needed(store: HealthStore, user_id: str, date: str) -> Intervention | None:
    targets = await store.get_user_targets(user_id)
    if targets is None:
        return None
    if targets.active_intervention_id:
        logger.debug(
            "User %s is locked by %s; skipping pattern check",
            user_id,
            targets.active_intervention_id,
        )
        return None

    result = await detect_clusters(store, user_id, NEGATIVE_WINDOW, date)
    if result.mode != "negative" or not result.hypothesis:
        return None

    start = date
    end = shift_days(start, INTERVENTION_DAYS)

    existing = await store.get_interventions(user_id)
    duplicate = find_duplicate(existing, result.hypothesis)
    if duplicate is not None:
        logger.warning(
            "Skipping intervention for user %s: hypothesis already tested in %s",
            user_id,
            duplicate.id,
        )
        return None
    overlap = find_overlap(existing, start, end)
    if overlap is not None:
        logger.warning(
            "Skipping intervention for user %s: %s..%s overlaps %s",
            user_id,
            start,
            end,
            overlap.id,
        )
        return None

    intervention = await store.create_intervention(user_id, result.hypothesis, start, end)
    await acquire_lock(store, user_id, intervention.id)
    logger.info("Opened intervention %s for user %s (%s..%s)", intervention.id, user_id, start, end)
    return intervention


# ---------------------------------------------------------------------------
# Manual creation
# ---------------------------------------------------------------------------

async def create_manual_intervention(
    store: HealthStore,
    user_id: str,
    hypothesis: str,
    start_date: str,
    end_date: str | None = None,
) -> Intervention:
    """Create a user-chosen intervention.

    Duplicate hypotheses are checked against the user's whole history, but
    overlap only against the currently active intervention.

    Raises:
        TargetsNotFoundError: If the user has not been onboarded.
        ValidationError: On an empty hypothesis or malformed dates.
        DuplicateHypothesisError: If the hypothesis was already used.
        OverlappingInterventionError: If the dates overlap the active intervention.
        InterventionLockedError: If another intervention is still in progress.
    """
    hypothesis = (hypothesis or "").strip()
    if not hypothesis:
        raise ValidationError("`hypothesis` must not be empty")
    start = validate_date(start_date, "start_date")
    end = (
        validate_date(end_date, "end_date")
        if end_date
        else shift_days(start, INTERVENTION_DAYS)
    )
    if end < start:
        raise ValidationError("`end_date` must not be before `start_date`")

    async with user_locks.hold(user_id):
        targets = await store.get_user_targets(user_id)
        if targets is None:
            raise TargetsNotFoundError(user_id)

        if find_duplicate(await store.get_interventions(user_id), hypothesis) is not None:
            raise DuplicateHypothesisError(
                "An intervention with the same hypothesis already exists"
            )

        active = await store.get_active_intervention(user_id)
        if active is not None and ranges_overlap(start, end, active.start_date, active.end_date):
            raise OverlappingInterventionError(
                f"Dates overlap the active intervention ({active.start_date}..{active.end_date}); "
                "overlapping active interventions are not allowed"
            )

        if await current_lock_state(store, targets) is InterventionLockState.LOCKED:
            raise InterventionLockedError(
                "Another intervention is still in progress; check in on it first"
            )

        intervention = await store.create_intervention(user_id, hypothesis, start, end)
        await acquire_lock(store, user_id, intervention.id)
        logger.info("Manual intervention %s created for user %s", intervention.id, user_id)
        return intervention


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------

async def check_in(
    store: HealthStore,
    user_id: str,
    intervention_id: str,
    result: str,
    today: str | None = None,
) -> Intervention:
    """Record the outcome of an intervention once its 7 days are over.

    Moves the user from LOCKED back to UNLOCKED when this intervention
    holds the lock.

    Raises:
        InterventionNotFoundError: If the intervention is missing or not the user's.
        CheckInError: If already completed, before ``end_date``, or the
            result is not one of Yes / No / Partial.
    """
    async with user_locks.hold(user_id):
        intervention = await store.get_intervention(intervention_id)
        if intervention is None or intervention.user_id != user_id:
            raise InterventionNotFoundError(f"Intervention {intervention_id!r} not found")
        if intervention.is_terminal:
            raise CheckInError(f"Intervention already completed with result {intervention.result!r}")

        current_day = today or today_iso()
        if current_day < intervention.end_date:
            raise CheckInError(
                f"Check-in opens on {intervention.end_date}; the experiment is still running"
            )
        if result not in INTERVENTION_RESULTS:
            raise CheckInError(f"`result` must be one of {', '.join(INTERVENTION_RESULTS)}")

        updated = await store.update_intervention(
            intervention_id, {"result": result, "completed_at": now_iso()}
        )
        await release_lock(store, user_id, intervention_id)
        logger.info("Intervention %s checked in: %s", intervention_id, result)
        return updated
