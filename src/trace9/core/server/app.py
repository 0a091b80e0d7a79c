"""Trace-9 MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from trace9.core.cache.targets_cache import InMemoryTTLCache
from trace9.core.config.settings import get_settings
from trace9.core.storage.database import TraceDatabase
from trace9.core.storage.encryption import EncryptionError, FieldEncryptor
from trace9.core.storage.repository import TraceRepository
from trace9.domains.health.store import HealthStore
from trace9.domains.health.store.repository_store import RepositoryHealthStore

logger = logging.getLogger(__name__)

SERVER_NAME = "Trace-9"
SERVER_VERSION = "0.1.0"


def create_app(*, store_override: HealthStore | None = None) -> FastMCP:
    """Create and configure the Trace-9 MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Initializes the encrypted log store (or takes the override)
    3. Registers the log, insight and intervention tools when storage exists
    """
    settings = get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Trace-9 personal health insight server. Log daily sleep, heart, "
            "nutrition and symptom metrics; each metric is flagged RED, YELLOW "
            "or GREEN against your targets and 7-day baselines, and recurring "
            "patterns turn into 7-day experiments you check in on."
        ),
    )

    # --- Initialize encrypted storage ---
    store: HealthStore | None = None
    if store_override is not None:
        store = store_override
    elif settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key)
            database = TraceDatabase(settings.db_path)
            database.initialize()
            cache = InMemoryTTLCache(
                ttl=settings.targets_cache_ttl_seconds,
                max_entries=settings.targets_cache_max_entries,
            )
            store = RepositoryHealthStore(TraceRepository(database, encryptor), cache)
            logger.info(
                "Log store initialized: %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence; logging tools are disabled")
    else:
        logger.info(
            "No ENCRYPTION_KEY configured; running without persistence. "
            "Set ENCRYPTION_KEY to enable daily logging."
        )

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "storage_enabled": store is not None,
            "user_id": settings.trace9_user_id,
        }

    if store is not None:
        from trace9.domains.health.tools.daily_log_tools import register_daily_log_tools
        from trace9.domains.health.tools.intervention_tools import register_intervention_tools

        default_targets = {
            "protein_target": settings.default_protein_target,
            "gut_target": settings.default_gut_target,
            "sun_target": settings.default_sun_target,
            "exercise_target": settings.default_exercise_target,
        }
        register_daily_log_tools(server, store, settings.trace9_user_id, default_targets)
        register_intervention_tools(server, store, settings.trace9_user_id)
        logger.info("Daily log and intervention tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
