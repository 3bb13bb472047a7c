"""Lightweight configuration package exports."""

from __future__ import annotations

from .settings import (
    AppSettings,
    ExpectationSettings,
    LoggingSettings,
    RepositorySettings,
    get_settings,
    load_settings,
)

__all__ = [
    "AppSettings",
    "ExpectationSettings",
    "LoggingSettings",
    "RepositorySettings",
    "get_settings",
    "load_settings",
]
