from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ACCEPTED_SCHEMES = ("postgresql://", "postgres://")


class PoolConfig(BaseSettings):
    """Connection settings for the governance store (asyncpg pool)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(..., alias="DATABASE_URL", min_length=1)
    db_pool_min_size: int = Field(default=1, alias="DB_POOL_MIN_SIZE", ge=1)
    db_pool_max_size: int = Field(default=10, alias="DB_POOL_MAX_SIZE", ge=1)
    db_pool_timeout_seconds: float | None = Field(
        default=None, alias="DB_POOL_TIMEOUT_SECONDS", gt=0
    )
    db_connect_attempts: int = Field(default=5, alias="DB_CONNECT_ATTEMPTS", ge=1)
    db_application_name: str = Field(default="band-governance", alias="DB_APPLICATION_NAME")
    db_statement_timeout_ms: int | None = Field(
        default=None, alias="DB_STATEMENT_TIMEOUT_MS", ge=1
    )

    @property
    def dsn(self) -> str:
        return self.database_url

    @property
    def min_size(self) -> int:
        return self.db_pool_min_size

    @property
    def max_size(self) -> int:
        return self.db_pool_max_size

    @property
    def timeout(self) -> float | None:
        return self.db_pool_timeout_seconds

    @property
    def connect_attempts(self) -> int:
        return self.db_connect_attempts

    @property
    def server_settings(self) -> dict[str, str]:
        """Session settings applied to every pooled connection.

        Deadlines are compared in the database, so sessions always run in UTC.
        """
        settings = {"application_name": self.db_application_name, "timezone": "UTC"}
        if self.db_statement_timeout_ms is not None:
            settings["statement_timeout"] = str(self.db_statement_timeout_ms)
        return settings

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Require a PostgreSQL URL; ``postgres://`` is rewritten to ``postgresql://``."""
        url = v.strip() if v else ""
        if not url:
            raise ValueError("DATABASE_URL cannot be empty")
        if not url.startswith(_ACCEPTED_SCHEMES):
            raise ValueError("DATABASE_URL must start with postgresql:// or postgres://")
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://") :]
        return url

    def model_post_init(self, __context: Any) -> None:
        if self.db_pool_max_size < self.db_pool_min_size:
            raise ValueError("DB_POOL_MAX_SIZE must be greater than or equal to DB_POOL_MIN_SIZE")
