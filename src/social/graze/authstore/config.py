"""
Configuration Module for authstore

This module defines the table-name configuration consumed by the adapter and
the environment-driven settings used by the maintenance CLI, using Pydantic for
validation.

The adapter itself only needs a `TableNames`: the names of the user and key
tables, and optionally the session table. A `None` session table disables
every session operation.

`Settings` loads the remaining operational knobs from environment variables,
with defaults suitable for development environments:
- Database connection string
- Table names
- Transaction isolation for the composite session/user read
- Metrics backend and StatsD location
- Error reporting
"""

import logging
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)

ISOLATION_LEVELS = ("READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE")


class TableNames(BaseModel):
    """
    Names of the tables the adapter operates on.

    `user` and `key` are required. `session` may be None, in which case the
    session operations are unavailable.
    """

    user: str
    key: str
    session: Optional[str] = None

    @field_validator("user", "key", "session")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None

        if len(v.strip()) == 0:
            raise ValueError("table name must not be blank")

        return v


class Settings(BaseSettings):
    """
    Settings for the authstore CLI and for applications wiring the adapter.

    Environment variables are automatically mapped to settings fields, with
    aliases provided where other tools use a different name. For example, the
    database connection string can be set with DATABASE_DSN, DATABASE_URL or
    PG_DSN.
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    database_dsn: str = Field(
        "postgresql+asyncpg://postgres:password@db/authstore",
        validation_alias=AliasChoices("database_dsn", "database_url", "pg_dsn"),
    )
    """
    SQLAlchemy async connection string.
    Set with DATABASE_DSN, DATABASE_URL or PG_DSN environment variables.
    Default: postgresql+asyncpg://postgres:password@db/authstore
    """

    user_table: str = "auth_user"
    """Name of the user table. Set with USER_TABLE."""

    key_table: str = "auth_key"
    """Name of the key table. Set with KEY_TABLE."""

    session_table: Optional[str] = "auth_session"
    """
    Name of the session table. Set with SESSION_TABLE.
    An empty value or "none" disables session operations.
    """

    isolation_level: Optional[str] = None
    """
    Isolation level for the transactional session and user read.
    One of READ COMMITTED, REPEATABLE READ or SERIALIZABLE. When unset the
    backend default is used. The level must be supported by the dialect:
    SQLite only accepts SERIALIZABLE, and anything else fails with an
    ArgumentError on the first transactional read.
    Set with ISOLATION_LEVEL environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "none"
    """
    Metrics backend, either "telegraf" or "none".
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    statsd_prefix: str = ""
    """
    Prefix joined to every metric name sent to Telegraf, empty for none.
    Set with STATSD_PREFIX environment variable.
    """

    @field_validator("session_table", mode="before")
    @classmethod
    def decode_session_table(cls, v) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, str) and v.strip().lower() in ("", "none", "null"):
            return None
        return v

    @field_validator("isolation_level", mode="before")
    @classmethod
    def decode_isolation_level(cls, v) -> Optional[str]:
        if v is None or v == "":
            return None
        level = str(v).strip().upper().replace("_", " ")
        if level not in ISOLATION_LEVELS:
            raise ValueError(
                f"isolation_level must be one of {', '.join(ISOLATION_LEVELS)}"
            )
        return level

    def table_names(self) -> TableNames:
        return TableNames(
            user=self.user_table, key=self.key_table, session=self.session_table
        )
