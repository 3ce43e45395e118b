"""
Runtime configuration.

Everything comes from environment variables so the same code runs locally,
in CI and in production.
"""

import os
from dataclasses import dataclass


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Service settings."""

    database_url: str = "sqlite:///commissions.db"
    environment: str = "dev"  # dev, staging, prod
    port: int = 8080
    default_currency: str = "GBP"
    log_level: str = "INFO"
    sql_echo: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ.get("DATABASE_URL", cls.database_url),
            environment=os.environ.get("ENVIRONMENT", cls.environment),
            port=int(os.environ.get("PORT", cls.port)),
            default_currency=os.environ.get("DEFAULT_CURRENCY", cls.default_currency).upper(),
            log_level=os.environ.get("LOG_LEVEL", cls.log_level).upper(),
            sql_echo=_env_flag("SQL_ECHO"),
        )
