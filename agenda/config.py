"""Runtime settings resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import time
from functools import lru_cache

from agenda.time_utils import parse_time_of_day

APP_NAME = "PracticeAgenda"

DEFAULT_SESSION_TIME = time(10, 0)


@dataclass(frozen=True)
class AgendaSettings:
    """Policy knobs for the scheduling engine."""

    default_session_time: time = DEFAULT_SESSION_TIME
    log_level: str = "INFO"
    # serve an in-memory demo practice instead of the database
    demo_mode: bool = False


@lru_cache(maxsize=1)
def get_settings() -> AgendaSettings:
    """Return the active settings derived from the environment."""

    raw_time = os.getenv("AGENDA_DEFAULT_SESSION_TIME")
    session_time = DEFAULT_SESSION_TIME
    if raw_time not in (None, ""):
        try:
            session_time = parse_time_of_day(raw_time)
        except ValueError as exc:
            raise ValueError(
                f"Environment variable AGENDA_DEFAULT_SESSION_TIME must be HH:MM; got {raw_time!r}"
            ) from exc

    log_level = (os.getenv("LOG_LEVEL") or "INFO").upper()
    demo_mode = os.getenv("AGENDA_DEMO", "0").lower() in {"1", "true", "yes"}
    return AgendaSettings(
        default_session_time=session_time, log_level=log_level, demo_mode=demo_mode
    )


__all__ = ["APP_NAME", "DEFAULT_SESSION_TIME", "AgendaSettings", "get_settings"]
