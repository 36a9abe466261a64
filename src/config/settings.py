from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GovernanceSettings(BaseSettings):
    """Runtime switches for the proposal governance engine (prefix ``BANDGOV_``)."""

    model_config = SettingsConfigDict(
        env_prefix="BANDGOV_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    db_schema: str = Field(default="governance", min_length=1)
    log_level: str = Field(default="INFO")
    notifications_enabled: bool = True
    # Quorum is reported on close but only decides the outcome when enforced.
    enforce_quorum: bool = False

    @field_validator("db_schema")
    @classmethod
    def validate_schema(cls, v: str) -> str:
        schema = v.strip()
        if not schema.replace("_", "").isalnum():
            raise ValueError("BANDGOV_DB_SCHEMA must be a plain SQL identifier")
        return schema

    @field_validator("log_level")
    @classmethod
    def normalise_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


@lru_cache(maxsize=1)
def get_settings() -> GovernanceSettings:
    return GovernanceSettings()
