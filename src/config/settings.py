"""
Runtime settings for the popup conversation engine.

Loaded once per Lambda container and injected into services by the wiring
layer; services never read the environment themselves.
"""

from dataclasses import dataclass
from typing import Optional
import os


def _env_int(name: str, default: int) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


@dataclass(frozen=True)
class EngineSettings:
    """Engine settings with local-friendly defaults."""

    environment: str = "dev"

    # Gates the whole multi-step path (sessions, progress, discounts).
    multi_step_enabled: bool = True
    session_ttl_hours: int = 24

    # "memory" keeps everything in-process; "aws" uses DynamoDB + Postgres.
    storage_backend: str = "memory"
    sessions_table: str = "popup-customer-sessions"
    emails_table: str = "popup-collected-emails"
    events_table: str = "popup-analytics-events"
    database_url: Optional[str] = None
    db_secret_arn: Optional[str] = None

    popup_cache_ttl_seconds: int = 60
    popup_cache_max_size: int = 200

    # JSON file of shops and popups loaded into the in-memory catalog.
    catalog_seed_file: Optional[str] = None

    def __post_init__(self) -> None:
        if self.storage_backend not in ("memory", "aws"):
            raise ValueError(f"Unknown STORAGE_BACKEND: {self.storage_backend!r}")
        if self.session_ttl_hours < 1:
            raise ValueError(
                f"SESSION_TTL_HOURS must be >= 1, got {self.session_ttl_hours}"
            )

    @classmethod
    def from_environment(cls) -> "EngineSettings":
        """Load settings from environment variables."""
        env = os.environ.get("ENVIRONMENT", "dev")
        kwargs = dict(
            environment=env,
            multi_step_enabled=os.environ.get("ENABLE_MULTI_POPUP", "true").lower() == "true",
            session_ttl_hours=_env_int("SESSION_TTL_HOURS", 24),
            storage_backend=os.environ.get("STORAGE_BACKEND", "memory").lower(),
            sessions_table=os.environ.get("SESSIONS_TABLE", cls.sessions_table),
            emails_table=os.environ.get("EMAILS_TABLE", cls.emails_table),
            events_table=os.environ.get("EVENTS_TABLE", cls.events_table),
            database_url=os.environ.get("DATABASE_URL") or None,
            db_secret_arn=os.environ.get("DB_SECRET_ARN") or None,
            popup_cache_ttl_seconds=_env_int("POPUP_CACHE_TTL_SECONDS", 60),
            catalog_seed_file=os.environ.get("CATALOG_SEED_FILE") or None,
        )

        # Production never runs on the in-process store.
        if env == "prod":
            kwargs["storage_backend"] = "aws"
            kwargs["popup_cache_max_size"] = 1000

        return cls(**kwargs)
