"""HealthStore backed by the SQLite repository, with a targets cache in front."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from trace9.core.cache.targets_cache import InMemoryTTLCache, TargetsCache
from trace9.core.storage.models import DailyLog, Intervention, UserTargets
from trace9.core.storage.repository import TraceRepository

logger = logging.getLogger(__name__)


class RepositoryHealthStore:
    """HealthStore implementation over :class:`TraceRepository`.

    Targets reads go through the injected cache; every targets write evicts
    the user's entry. Cached targets are handed out as copies so callers may
    mutate their object freely.
    """

    def __init__(
        self,
        repository: TraceRepository,
        cache: TargetsCache | None = None,
    ) -> None:
        self._repo = repository
        self._cache = cache if cache is not None else InMemoryTTLCache()

    # --- targets ---

    async def get_user_targets(self, user_id: str) -> UserTargets | None:
        cached = self._cache.get(user_id)
        if cached is not None:
            return dataclasses.replace(cached)
        targets = self._repo.get_user_targets(user_id)
        if targets is not None:
            self._cache.set(user_id, dataclasses.replace(targets))
        return targets

    async def create_user_targets(self, user_id: str, **fields: Any) -> UserTargets:
        self._cache.evict(user_id)
        return self._repo.create_user_targets(user_id, **fields)

    async def update_user_targets(self, user_id: str, fields: dict[str, Any]) -> UserTargets:
        self._cache.evict(user_id)
        return self._repo.update_user_targets(user_id, fields)

    # --- daily logs ---

    async def get_daily_log(self, user_id: str, date: str) -> DailyLog | None:
        return self._repo.get_daily_log(user_id, date)

    async def get_daily_logs(
        self,
        user_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[DailyLog]:
        return self._repo.get_daily_logs(user_id, start_date, end_date)

    async def create_daily_log(self, user_id: str, fields: dict[str, Any]) -> DailyLog:
        return self._repo.create_daily_log(user_id, fields)

    async def update_daily_log(self, log_id: str, fields: dict[str, Any]) -> DailyLog:
        return self._repo.update_daily_log(log_id, fields)

    async def delete_daily_log(self, log_id: str) -> bool:
        return self._repo.delete_daily_log(log_id)

    # --- interventions ---

    async def get_intervention(self, intervention_id: str) -> Intervention | None:
        return self._repo.get_intervention(intervention_id)

    async def get_interventions(self, user_id: str) -> list[Intervention]:
        return self._repo.get_interventions(user_id)

    async def get_active_intervention(self, user_id: str) -> Intervention | None:
        return self._repo.get_active_intervention(user_id)

    async def create_intervention(
        self,
        user_id: str,
        hypothesis_text: str,
        start_date: str,
        end_date: str,
    ) -> Intervention:
        return self._repo.create_intervention(user_id, hypothesis_text, start_date, end_date)

    async def update_intervention(
        self, intervention_id: str, fields: dict[str, Any]
    ) -> Intervention:
        return self._repo.update_intervention(intervention_id, fields)
