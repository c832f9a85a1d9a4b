"""Database helpers for the practice agenda."""

from __future__ import annotations

from .config import DatabaseSettings, get_database_settings
from .models import metadata, patients, session_instances

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "metadata",
    "patients",
    "session_instances",
]
