"""MCP tools for 7-day interventions (experiments).

Only one intervention runs at a time. Auto-created ones come from
``log_daily_metrics``; these tools list, create and close them.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from trace9.domains.health.store import HealthStore

from trace9.domains.health.domain_logic.dates import today_iso
from trace9.domains.health.domain_logic.interventions import check_in, create_manual_intervention
from trace9.domains.health.tools.responses import HANDLED_ERRORS, error_response

logger = logging.getLogger(__name__)


def register_intervention_tools(
    mcp: FastMCP,
    store: HealthStore,
    user_id: str,
) -> None:
    """Register intervention tools on the MCP server."""

    @mcp.tool
    async def list_interventions(ctx: Context) -> str:
        """List all your interventions, newest first, with their outcomes."""
        interventions = await store.get_interventions(user_id)
        interventions.sort(key=lambda i: (i.start_date, i.created_at), reverse=True)
        return json.dumps({
            "count": len(interventions),
            "interventions": [i.to_dict() for i in interventions],
        })

    @mcp.tool
    async def get_active_intervention(ctx: Context) -> str:
        """Show the intervention currently in progress, if any."""
        active = await store.get_active_intervention(user_id)
        if active is None:
            return json.dumps({"status": "none"})
        return json.dumps({"status": "active", "intervention": active.to_dict()})

    @mcp.tool
    async def create_intervention(
        ctx: Context,
        hypothesis: str,
        start_date: str = "",
        end_date: str = "",
    ) -> str:
        """Start a 7-day experiment you chose yourself.

        Args:
            hypothesis: What you are testing (e.g. 'Sleeping 8h reduces headaches').
            start_date: First day (YYYY-MM-DD). Defaults to today.
            end_date: Last day (YYYY-MM-DD). Defaults to start + 7 days.
        """
        try:
            intervention = await create_manual_intervention(
                store,
                user_id,
                hypothesis,
                start_date or today_iso(),
                end_date or None,
            )
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        return json.dumps({"status": "created", "intervention": intervention.to_dict()})

    @mcp.tool
    async def check_in_intervention(
        ctx: Context,
        intervention_id: str,
        result: str,
    ) -> str:
        """Record whether an experiment helped, once its end date has arrived.

        Args:
            intervention_id: The intervention to close.
            result: 'Yes', 'No' or 'Partial'.
        """
        try:
            intervention = await check_in(store, user_id, intervention_id, result)
        except HANDLED_ERRORS as exc:
            return error_response(exc)
        return json.dumps({"status": "completed", "intervention": intervention.to_dict()})
