"""Runtime settings resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional_path(name: str) -> Optional[Path]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return Path(value.strip())


def _env_logger_levels(name: str) -> tuple[tuple[str, str], ...]:
    """Parse ``"uvicorn.access=WARNING,multical.services=DEBUG"`` into pairs."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return ()
    pairs = []
    for item in value.split(","):
        logger_name, sep, level = item.partition("=")
        if not sep or not logger_name.strip() or not level.strip():
            raise ValueError(f"{name} entries must look like logger=LEVEL, got {item!r}")
        pairs.append((logger_name.strip(), level.strip().upper()))
    return tuple(pairs)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    logger_levels: tuple[tuple[str, str], ...]
    database_path: Path
    rules_path: Optional[Path]
    admin_token: Optional[str]
    timezone: str
    calendar_id_prefix: str
    group_sentinel: str
    group_event_lookahead_minutes: int
    monitor_backfill_minutes: int
    notification_sender: str
    session_ttl_minutes: int
    notification_new_subject: str
    notification_cancel_subject: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive copies with replace()."""
    admin_token = os.getenv("ADMIN_TOKEN")
    return Settings(
        app_name="Multical Occupancy Scheduler",
        app_version="1.0.0",
        log_level=_env_str("LOG_LEVEL", "INFO"),
        logger_levels=_env_logger_levels("MULTICAL_LOGGER_LEVELS"),
        database_path=Path(_env_str("MULTICAL_DATABASE_PATH", "data/multical.db")),
        rules_path=_env_optional_path("MULTICAL_RULES_PATH"),
        admin_token=admin_token.strip() if admin_token and admin_token.strip() else None,
        timezone=_env_str("MULTICAL_TIMEZONE", "America/New_York"),
        calendar_id_prefix="c_",
        group_sentinel="GROUP",
        group_event_lookahead_minutes=10080,
        monitor_backfill_minutes=60,
        notification_sender="no-reply@calendly.com",
        session_ttl_minutes=int(_env_str("ADMIN_SESSION_TTL_MINUTES", "480")),
        notification_new_subject="NEW",
        notification_cancel_subject="CAN",
    )
