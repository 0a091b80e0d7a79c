"""Shared test fixtures for Trace-9 tests."""

from __future__ import annotations

import dataclasses
import sys
import uuid
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("TRACE9_USER_ID", "local")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from trace9.core.storage.models import (  # noqa: E402
    DailyLog,
    Intervention,
    UserTargets,
)


# ---------------------------------------------------------------------------
# Dict-backed HealthStore
# ---------------------------------------------------------------------------

class FakeHealthStore:
    """In-memory HealthStore for pipeline tests.

    ``get_daily_logs`` returns logs newest first on purpose: the protocol
    promises no ordering, so callers must sort. Method names added to
    ``fail_on`` raise RuntimeError when called.
    """

    def __init__(self) -> None:
        self.targets: dict[str, UserTargets] = {}
        self.logs: dict[str, DailyLog] = {}
        self.interventions: dict[str, Intervention] = {}
        self.fail_on: set[str] = set()
        self.calls: list[str] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")

    async def get_user_targets(self, user_id: str) -> UserTargets | None:
        self._enter("get_user_targets")
        targets = self.targets.get(user_id)
        return dataclasses.replace(targets) if targets is not None else None

    async def create_user_targets(self, user_id: str, **fields: Any) -> UserTargets:
        self._enter("create_user_targets")
        targets = UserTargets(id=str(uuid.uuid4()), user_id=user_id, **fields)
        self.targets[user_id] = targets
        return dataclasses.replace(targets)

    async def update_user_targets(self, user_id: str, fields: dict[str, Any]) -> UserTargets:
        self._enter("update_user_targets")
        self.targets[user_id] = dataclasses.replace(self.targets[user_id], **fields)
        return dataclasses.replace(self.targets[user_id])

    async def get_daily_log(self, user_id: str, date: str) -> DailyLog | None:
        self._enter("get_daily_log")
        for log in self.logs.values():
            if log.user_id == user_id and log.date == date:
                return dataclasses.replace(log)
        return None

    async def get_daily_logs(
        self,
        user_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[DailyLog]:
        self._enter("get_daily_logs")
        logs = [
            dataclasses.replace(log)
            for log in self.logs.values()
            if log.user_id == user_id
            and (start_date is None or log.date >= start_date)
            and (end_date is None or log.date <= end_date)
        ]
        return sorted(logs, key=lambda log: log.date, reverse=True)

    async def create_daily_log(self, user_id: str, fields: dict[str, Any]) -> DailyLog:
        self._enter("create_daily_log")
        values = {k: str(v) if k.endswith("_flag") else v for k, v in fields.items()}
        log = DailyLog(id=str(uuid.uuid4()), user_id=user_id, **values)
        self.logs[log.id] = log
        return dataclasses.replace(log)

    async def update_daily_log(self, log_id: str, fields: dict[str, Any]) -> DailyLog:
        self._enter("update_daily_log")
        values = {
            k: str(v) if k.endswith("_flag") else v
            for k, v in fields.items()
            if k not in ("id", "user_id", "date", "created_at")
        }
        self.logs[log_id] = dataclasses.replace(self.logs[log_id], **values)
        return dataclasses.replace(self.logs[log_id])

    async def delete_daily_log(self, log_id: str) -> bool:
        self._enter("delete_daily_log")
        return self.logs.pop(log_id, None) is not None

    async def get_intervention(self, intervention_id: str) -> Intervention | None:
        self._enter("get_intervention")
        intervention = self.interventions.get(intervention_id)
        return dataclasses.replace(intervention) if intervention is not None else None

    async def get_interventions(self, user_id: str) -> list[Intervention]:
        self._enter("get_interventions")
        return [dataclasses.replace(i) for i in self.interventions.values() if i.user_id == user_id]

    async def get_active_intervention(self, user_id: str) -> Intervention | None:
        self._enter("get_active_intervention")
        live = [
            i for i in self.interventions.values() if i.user_id == user_id and i.result is None
        ]
        if not live:
            return None
        return dataclasses.replace(max(live, key=lambda i: i.start_date))

    async def create_intervention(
        self,
        user_id: str,
        hypothesis_text: str,
        start_date: str,
        end_date: str,
    ) -> Intervention:
        self._enter("create_intervention")
        intervention = Intervention(
            id=str(uuid.uuid4()),
            user_id=user_id,
            hypothesis_text=hypothesis_text,
            start_date=start_date,
            end_date=end_date,
        )
        self.interventions[intervention.id] = intervention
        return dataclasses.replace(intervention)

    async def update_intervention(
        self, intervention_id: str, fields: dict[str, Any]
    ) -> Intervention:
        self._enter("update_intervention")
        self.interventions[intervention_id] = dataclasses.replace(
            self.interventions[intervention_id], **fields
        )
        return dataclasses.replace(self.interventions[intervention_id])


@pytest.fixture
def fake_store() -> FakeHealthStore:
    return FakeHealthStore()


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def trace_db():
    """Create an in-memory TraceDatabase for testing."""
    from trace9.core.storage.database import TraceDatabase

    db = TraceDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from trace9.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def trace_repository(trace_db, field_encryptor):
    """Create a TraceRepository backed by in-memory SQLite."""
    from trace9.core.storage.repository import TraceRepository

    return TraceRepository(trace_db, field_encryptor)


@pytest.fixture
def health_store(trace_repository):
    """Create a RepositoryHealthStore with a fresh targets cache."""
    from trace9.core.cache.targets_cache import InMemoryTTLCache
    from trace9.domains.health.store.repository_store import RepositoryHealthStore

    return RepositoryHealthStore(trace_repository, InMemoryTTLCache(ttl=60, max_entries=100))
