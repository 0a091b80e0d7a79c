"""Storage collaborator: the async interface the insight pipeline persists through."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from trace9.core.storage.models import DailyLog, Intervention, UserTargets


@runtime_checkable
class HealthStore(Protocol):
    """Abstract interface for targets, daily logs and interventions.

    The pipeline calls these methods without knowing whether records live in
    SQLite, a remote database, or an in-memory fake. Date bounds are
    inclusive ``YYYY-MM-DD`` strings; list results carry no ordering
    guarantee, so callers sort.
    """

    async def get_user_targets(self, user_id: str) -> UserTargets | None:
        ...

    async def create_user_targets(self, user_id: str, **fields: Any) -> UserTargets:
        ...

    async def update_user_targets(self, user_id: str, fields: dict[str, Any]) -> UserTargets:
        ...

    async def get_daily_log(self, user_id: str, date: str) -> DailyLog | None:
        ...

    async def get_daily_logs(
        self,
        user_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[DailyLog]:
        ...

    async def create_daily_log(self, user_id: str, fields: dict[str, Any]) -> DailyLog:
        ...

    async def update_daily_log(self, log_id: str, fields: dict[str, Any]) -> DailyLog:
        ...

    async def delete_daily_log(self, log_id: str) -> bool:
        ...

    async def get_intervention(self, intervention_id: str) -> Intervention | None:
        ...

    async def get_interventions(self, user_id: str) -> list[Intervention]:
        ...

    async def get_active_intervention(self, user_id: str) -> Intervention | None:
        """Most recent intervention with no result yet."""
        ...

    async def create_intervention(
        self,
        user_id: str,
        hypothesis_text: str,
        start_date: str,
        end_date: str,
    ) -> Intervention:
        ...

    async def update_intervention(
        self, intervention_id: str, fields: dict[str, Any]
    ) -> Intervention:
        ...
