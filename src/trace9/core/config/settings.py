"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Trace-9 server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback; there is no auth layer in front of the tools.
    trace9_host: str = "127.0.0.1"
    trace9_port: int = 8001
    trace9_log_level: str = "info"
    trace9_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.trace9/trace9.db"

    # Encryption (symptom labels at rest). Empty disables persistence.
    encryption_key: str = ""

    # Targets cache
    targets_cache_ttl_seconds: float = 300.0
    targets_cache_max_entries: int = 5000

    # Tools act on behalf of this single local user
    trace9_user_id: str = "local"

    # Manual targets created on first access
    default_protein_target: int = 100
    default_gut_target: int = 5
    default_sun_target: int = 5
    default_exercise_target: int = 5


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
