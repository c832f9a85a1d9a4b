"""Recurrence rule evaluation.

``due_dates`` maps a patient's recurrence configuration and a target month to
the dates on which a session is due.  Biweekly cadence is counted from the
first occurrence of the anchor weekday *within the month*, so it restarts every
month instead of following a continuous fortnightly rhythm.
"""

from __future__ import annotations

from datetime import date
from typing import List

from agenda.errors import ConfigurationError
from agenda.models import Patient, Recurrence
from agenda.time_utils import month_days, sunday_weekday


def anchor_dates(anchor_weekday: int, year: int, month: int) -> List[date]:
    """Return every date in the month falling on ``anchor_weekday`` (Sunday=0)."""

    return [day for day in month_days(year, month) if sunday_weekday(day) == anchor_weekday]


def due_dates(patient: Patient, year: int, month: int) -> List[date]:
    """Return the ordered dates on which ``patient`` is due in ``year``/``month``."""

    if patient.recurrence is Recurrence.SINGLE:
        raise ConfigurationError(
            f"patient {patient.id} has no recurrence to evaluate", patient_id=patient.id
        )
    patient.check_recurrence()

    matches = anchor_dates(patient.anchor_weekday, year, month)
    if patient.recurrence is Recurrence.WEEKLY:
        return matches
    if patient.recurrence is Recurrence.BIWEEKLY:
        return [day for index, day in enumerate(matches) if index % 2 == 0]
    if patient.recurrence is Recurrence.MONTHLY:
        return matches[:1]
    raise ConfigurationError(
        f"unsupported recurrence {patient.recurrence!r}", patient_id=patient.id
    )


__all__ = ["anchor_dates", "due_dates"]
