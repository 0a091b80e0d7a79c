"""MCP tools for targets, daily logs and insights.

Every tool acts for the single user the server is bound to. Logged values
are flagged on write; a negative multi-day pattern may open an intervention
as a side effect of ``log_daily_metrics``.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from trace9.domains.health.store import HealthStore

from trace9.domains.health.domain_logic.cluster_detector import detect_clusters
from trace9.domains.health.domain_logic.dates import today_iso
from trace9.domains.health.domain_logic.insights import get_insights as compute_insights
from trace9.domains.health.domain_logic.pipeline import (
    ensure_targets,
    record_daily_log,
    remove_daily_log,
)
from trace9.domains.health.domain_logic.validation import validate_date, validate_targets
from trace9.domains.health.tools.responses import HANDLED_ERRORS, error_response

logger = logging.getLogger(__name__)


def register_daily_log_tools(
    mcp: FastMCP,
    store: HealthStore,
    user_id: str,
    default_targets: dict[str, Any] | None = None,
) -> None:
    """Register targets, daily log and insight tools on the MCP server."""

    @mcp.tool
    async def get_targets(ctx: Context) -> str:
        """Show your manual targets, wearable baselines and onboarding status.

        Default targets are created the first time this is called.
        """
        targets = await ensure_targets(store, user_id, default_targets)
        return json.dumps(targets.to_dict())

    @mcp.tool
    async def update_targets(
        ctx: Context,
        protein_target: int | None = None,
        gut_target: int | None = None,
        sun_target: int | None = None,
        exercise_target: int | None = None,
    ) -> str:
        """Change your manual daily targets.

        Args:
            protein_target: Grams of protein per day (0-5000).
            gut_target: Gut-health score to aim for (1-5).
            sun_target: Sun exposure score to aim for (1-5).
            exercise_target: Exercise score to aim for (1-5).
        """
        changes = {
            name: value
            for name, value in {
                "protein_target": protein_target,
                "gut_target": gut_target,
                "sun_target": sun_target,
                "exercise_target": exercise_target,
            }.items()
            if value is not None
        }
        if not changes:
            return json.dumps({
                "status": "error",
                "error": "validation_error",
                "message": "No targets provided",
            })
        try:
            clean = validate_targets(changes)
            await ensure_targets(store, user_id, default_targets)
            targets = await store.update_user_targets(user_id, clean)
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        logger.info("Targets updated for user %s: %s", user_id, sorted(clean))
        return json.dumps({"status": "updated", "targets": targets.to_dict()})

    @mcp.tool
    async def log_daily_metrics(
        ctx: Context,
        sleep: float | None = None,
        rhr: int | None = None,
        hrv: float | None = None,
        protein: int | None = None,
        gut: int | None = None,
        sun: int | None = None,
        exercise: int | None = None,
        symptom_score: int | None = None,
        symptom_name: str | None = None,
        date: str = "",
    ) -> str:
        """Record one day of metrics. Re-logging a date updates it.

        Args:
            sleep: Hours slept (0-24).
            rhr: Resting heart rate in BPM.
            hrv: Heart rate variability in milliseconds.
            protein: Grams of protein eaten.
            gut: Gut-health score (1-5).
            sun: Sun exposure score (1-5).
            exercise: Exercise score (1-5).
            symptom_score: Symptom severity (0 none, 5 severe).
            symptom_name: Optional short label for the symptom.
            date: Day being logged (YYYY-MM-DD). Defaults to today.
        """
        payload = {
            "date": date or today_iso(),
            "sleep": sleep,
            "rhr": rhr,
            "hrv": hrv,
            "protein": protein,
            "gut": gut,
            "sun": sun,
            "exercise": exercise,
            "symptom_score": symptom_score,
            "symptom_name": symptom_name,
        }
        try:
            await ensure_targets(store, user_id, default_targets)
            outcome = await record_daily_log(store, user_id, payload)
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        return json.dumps({"status": "saved" if outcome.created else "updated", **outcome.to_dict()})

    @mcp.tool
    async def get_daily_logs(
        ctx: Context,
        start_date: str = "",
        end_date: str = "",
    ) -> str:
        """List your logged days with their RED/YELLOW/GREEN flags, oldest first.

        Args:
            start_date: First day to include (YYYY-MM-DD). Optional.
            end_date: Last day to include (YYYY-MM-DD). Optional.
        """
        try:
            if start_date:
                validate_date(start_date, "start_date")
            if end_date:
                validate_date(end_date, "end_date")
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        logs = await store.get_daily_logs(user_id, start_date or None, end_date or None)
        logs.sort(key=lambda log: log.date)
        return json.dumps({"count": len(logs), "logs": [log.to_dict() for log in logs]})

    @mcp.tool
    async def delete_daily_log(ctx: Context, date: str) -> str:
        """Delete the log for one day.

        Args:
            date: The day to delete (YYYY-MM-DD).
        """
        try:
            deleted = await remove_daily_log(store, user_id, date)
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        if deleted:
            logger.info("Deleted daily log for user %s on %s", user_id, date)
            return json.dumps({"status": "deleted", "date": date})
        return json.dumps({"status": "not_found", "date": date})

    @mcp.tool
    async def get_insights(ctx: Context, end_date: str = "") -> str:
        """Where you stand: gathering data, mid-experiment, action needed, or stable.

        Args:
            end_date: Last day to consider (YYYY-MM-DD). Defaults to your latest log.
        """
        try:
            if end_date:
                validate_date(end_date, "end_date")
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        insights = await compute_insights(store, user_id, end_date or None)
        return json.dumps(insights)

    @mcp.tool
    async def detect_patterns(
        ctx: Context,
        window_days: int = 3,
        end_date: str = "",
    ) -> str:
        """Scan recent days for a negative, positive or stagnation pattern.

        Read-only: never opens an intervention.

        Args:
            window_days: Days of history of interest (the scan looks back at least 7).
            end_date: Last day to scan (YYYY-MM-DD). Defaults to today.
        """
        try:
            if end_date:
                validate_date(end_date, "end_date")
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        result = await detect_clusters(store, user_id, max(window_days, 1), end_date or None)
        return json.dumps(result.to_dict())
