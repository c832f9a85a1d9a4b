"""Monthly materialisation of recurring sessions.

``plan_month`` is a pure function over the roster and a snapshot of existing
instances.  ``generate_month`` plans from the store's snapshot and appends
each planned instance through :meth:`SessionStore.insert`; the store re-checks
the per-day rule inside its lock, so a concurrent pass that got there first
simply turns the insert into a skip.  Running the pass again for the same
month is therefore always safe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Iterable, List, Optional, Set, Tuple

import structlog

from agenda.config import get_settings
from agenda.errors import ConfigurationError, DuplicateInsertError
from agenda.models import Patient, PatientStatus, SessionInstance, SessionStatus
from agenda.recurrence import due_dates
from agenda.store import SessionStore
from agenda.time_utils import day_key

logger = structlog.get_logger(__name__)


@dataclass
class GenerationReport:
    """Outcome of one generation pass."""

    year: int
    month: int
    created: List[SessionInstance] = field(default_factory=list)
    skipped_existing: int = 0
    skipped_patients: List[str] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_patients)


def _eligible(patient: Patient) -> bool:
    return patient.status is PatientStatus.ACTIVE and patient.is_recurring


def plan_month(
    roster: Iterable[Patient],
    existing: Iterable[SessionInstance],
    year: int,
    month: int,
    session_time: Optional[time] = None,
) -> Tuple[List[SessionInstance], int, List[str]]:
    """Return ``(planned, skipped_existing, skipped_patient_ids)`` for a month.

    Nothing is mutated.  A due date is skipped when the patient already has any
    instance on that calendar day, whatever its time or status.
    """

    when = session_time or get_settings().default_session_time
    occupied: Set[Tuple[str, str]] = {(item.patient_id, item.day_key) for item in existing}
    planned: List[SessionInstance] = []
    skipped_existing = 0
    skipped_patients: List[str] = []

    for patient in roster:
        if not _eligible(patient):
            continue
        try:
            dates = due_dates(patient, year, month)
        except ConfigurationError as exc:
            logger.warning(
                "generation_patient_skipped",
                patient_id=patient.id,
                reason=str(exc),
                year=year,
                month=month,
            )
            skipped_patients.append(patient.id)
            continue

        for day in dates:
            key = (patient.id, day_key(day))
            if key in occupied:
                skipped_existing += 1
                continue
            occupied.add(key)
            planned.append(
                SessionInstance(
                    patient_id=patient.id,
                    occurs_at=datetime.combine(day, when),
                    status=SessionStatus.SCHEDULED,
                    paid=False,
                    value_snapshot=patient.value_per_session,
                )
            )

    return planned, skipped_existing, skipped_patients


def generate_month(
    roster: Iterable[Patient],
    store: SessionStore,
    year: int,
    month: int,
    *,
    session_time: Optional[time] = None,
) -> GenerationReport:
    """Materialise the month's due sessions for every eligible patient."""

    planned, skipped_existing, skipped_patients = plan_month(
        roster, store.snapshot(), year, month, session_time
    )
    report = GenerationReport(
        year=year,
        month=month,
        skipped_existing=skipped_existing,
        skipped_patients=skipped_patients,
    )

    for instance in planned:
        try:
            stored = store.insert(instance)
        except DuplicateInsertError:
            report.skipped_existing += 1
            continue
        report.created.append(stored)

    logger.info(
        "month_generated",
        year=year,
        month=month,
        created=report.created_count,
        skipped_existing=report.skipped_existing,
        skipped_patients=report.skipped_count,
    )
    return report


__all__ = ["GenerationReport", "plan_month", "generate_month"]
