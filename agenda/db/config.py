"""Database configuration for the agenda.

Everything is resolved from the environment once, when the settings are
loaded, so a bad value fails at startup rather than at first connection.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from platformdirs import user_data_dir

from agenda.config import APP_NAME

DB_FILENAME = "agenda.db"


@dataclass(frozen=True)
class DatabaseSettings:
    """Where the agenda is stored and how the engine pools connections."""

    url: str
    echo: bool = False
    pool_size: Optional[int] = None
    max_overflow: Optional[int] = None
    pool_timeout: Optional[int] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def engine_options(self) -> Dict[str, object]:
        """Keyword arguments for :func:`sqlalchemy.create_engine`."""

        options: Dict[str, object] = {"echo": self.echo, "future": True}
        pooling = {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
        }
        options.update({key: value for key, value in pooling.items() if value is not None})
        if self.is_sqlite:
            # sessions are shared across FastAPI worker threads
            options["connect_args"] = {"check_same_thread": False}
        return options


def _sqlite_url(path_override: Optional[str]) -> str:
    if path_override:
        target = Path(path_override).expanduser()
        if target.is_dir():
            target = target / DB_FILENAME
    else:
        target = Path(user_data_dir(APP_NAME, APP_NAME)) / DB_FILENAME
    target.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{target}"


def _int_setting(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer; got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
    """Return the database settings derived from the environment.

    ``AGENDA_DATABASE_URL`` wins over ``DATABASE_URL``; without either the
    agenda uses a SQLite file at ``AGENDA_DB_PATH`` or in the user data dir.
    """

    url = os.getenv("AGENDA_DATABASE_URL") or os.getenv("DATABASE_URL")
    return DatabaseSettings(
        url=url or _sqlite_url(os.getenv("AGENDA_DB_PATH")),
        echo=os.getenv("AGENDA_DB_ECHO", "0").lower() in {"1", "true", "yes"},
        pool_size=_int_setting("DB_POOL_SIZE"),
        max_overflow=_int_setting("DB_MAX_OVERFLOW"),
        pool_timeout=_int_setting("DB_POOL_TIMEOUT"),
    )


__all__ = ["DB_FILENAME", "DatabaseSettings", "get_database_settings"]
