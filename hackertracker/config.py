"""
Runtime settings.

Settings are read once by the CLI entry point (environment, then flags)
and handed to every component at construction; nothing reads the
environment after startup.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_DATABASE_URL = "sqlite:///data/hackertracker.db"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

STORE_BACKENDS = ("sql", "redis")
BROKER_BACKENDS = ("redis", "local")


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_str(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if value is None or value.strip() == "":
        return None
    return value.strip()


@dataclass(frozen=True)
class Settings:
    session_token: Optional[str] = None
    team_handle: Optional[str] = None

    store_backend: str = "sql"
    database_url: str = DEFAULT_DATABASE_URL
    broker_backend: str = "redis"
    redis_url: str = DEFAULT_REDIS_URL

    discord_webhook_url: Optional[str] = None

    reputation_polling: bool = True
    reports_polling: bool = True
    thanks_polling: bool = False
    reputation_interval: float = 60.0  # 1 minute
    reports_interval: float = 300.0  # 5 minutes
    thanks_interval: float = 60.0 * 60  # 1 hour
    programs_interval: float = 60.0 * 60 * 12  # 12 hours

    request_timeout: float = 15.0
    reports_page_size: int = 10
    max_backlog: int = 1000

    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    @property
    def tracks_all_programs(self) -> bool:
        return self.team_handle is None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables (``os.environ`` by default)."""
        env = os.environ if env is None else env
        log_dir = _env_str(env, "LOG_DIR")
        settings = cls(
            session_token=_env_str(env, "SESSION_TOKEN"),
            team_handle=_env_str(env, "TEAM_HANDLE"),
            store_backend=(_env_str(env, "STORE_BACKEND") or cls.store_backend).lower(),
            database_url=_env_str(env, "DATABASE_URL") or cls.database_url,
            broker_backend=(_env_str(env, "BROKER") or cls.broker_backend).lower(),
            redis_url=_env_str(env, "REDIS_URL") or cls.redis_url,
            discord_webhook_url=_env_str(env, "DISCORD_WEBHOOK_URL"),
            reputation_polling=_env_bool(env.get("REPUTATION_POLLING"), True),
            reports_polling=_env_bool(env.get("REPORTS_POLLING"), True),
            thanks_polling=_env_bool(env.get("THANKS_POLLING"), False),
            reputation_interval=float(env.get("REPUTATION_INTERVAL", cls.reputation_interval)),
            reports_interval=float(env.get("REPORTS_INTERVAL", cls.reports_interval)),
            thanks_interval=float(env.get("THANKS_INTERVAL", cls.thanks_interval)),
            programs_interval=float(env.get("PROGRAMS_INTERVAL", cls.programs_interval)),
            request_timeout=float(env.get("REQUEST_TIMEOUT", cls.request_timeout)),
            reports_page_size=int(env.get("REPORTS_PAGE_SIZE", cls.reports_page_size)),
            max_backlog=int(env.get("MAX_BACKLOG", cls.max_backlog)),
            log_level=(_env_str(env, "LOG_LEVEL") or cls.log_level).upper(),
            log_dir=Path(log_dir) if log_dir else None,
        )
        settings.validate()
        return settings

    def with_overrides(self, **overrides) -> "Settings":
        """Return a copy with the non-None overrides applied (CLI flags)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {self.store_backend!r}"
            )
        if self.broker_backend not in BROKER_BACKENDS:
            raise ValueError(
                f"BROKER must be one of {', '.join(BROKER_BACKENDS)}, got {self.broker_backend!r}"
            )
        for name in (
            "reputation_interval",
            "reports_interval",
            "thanks_interval",
            "programs_interval",
            "request_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_backlog <= 0:
            raise ValueError("max_backlog must be positive")
        if self.reports_page_size <= 0:
            raise ValueError("reports_page_size must be positive")
