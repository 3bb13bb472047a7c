"""Configuration system for the pipeline engine."""

from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class RepositorySettings(BaseModel):
    """Connection defaults for the remote resource repository."""

    base_url: str = Field(
        default="http://localhost:8080/rest",
        description="Base URI that resource identifiers are appended to",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Transport timeout applied to every repository request",
    )
    default_accept: str = Field(
        default="application/rdf+xml",
        description="Accept header sent on reads when neither message nor endpoint sets one",
    )
    retry_attempts: int = Field(
        default=1,
        ge=1,
        description="Transport-level attempts per request; 1 disables retries",
    )
    retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Initial exponential backoff between transport retries",
    )
    retry_status_forcelist: list[int] = Field(
        default_factory=list,
        description="Response statuses retried within the attempt budget, e.g. [503]",
    )


class ExpectationSettings(BaseModel):
    """Defaults for capture endpoint verification."""

    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How long assert_satisfied waits before failing",
    )
    poll_interval_seconds: float = Field(
        default=0.05,
        gt=0,
        description="Upper bound between re-evaluations while waiting",
    )


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: str = Field(default="INFO", description="Log level for application output")
    scrub_fields: Sequence[str] = Field(
        default_factory=lambda: ["password", "token", "secret", "authorization"],
        description="Fields that should be redacted in logs",
    )


class AppSettings(BaseSettings):
    """Top-level application settings."""

    service_name: str = "resource-flow"
    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    expectations: ExpectationSettings = Field(default_factory=ExpectationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(env_prefix="RF_", env_nested_delimiter="__")


def load_settings() -> AppSettings:
    """Load application settings from the environment."""
    try:
        return AppSettings()
    except ValidationError as err:
        raise RuntimeError(f"Invalid configuration: {err}") from err


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Cached accessor used by production code."""
    return load_settings()


__all__ = [
    "AppSettings",
    "ExpectationSettings",
    "LoggingSettings",
    "RepositorySettings",
    "get_settings",
    "load_settings",
]
