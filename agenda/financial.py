"""Monthly financial aggregation derived from session instances.

Nothing here is stored.  ``expected`` covers billable outcomes
(``COMPLETED`` and ``PATIENT_ABSENT``), ``received`` the paid part of it and
``pending`` the rest.  Sessions still ``SCHEDULED`` feed a separate
``projected`` figure.  Cancelled, therapist-absent and unconfirmed sessions
never count.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from pydantic import Field, computed_field

from agenda.lifecycle import BILLABLE_STATUSES
from agenda.models import AgendaModel, Patient, PatientStatus, SessionInstance, SessionStatus
from agenda.time_utils import in_month

_EXCLUDED_FROM_STATEMENTS = frozenset(
    {SessionStatus.CANCELLED, SessionStatus.THERAPIST_ABSENT, SessionStatus.UNCONFIRMED}
)

ZERO = Decimal("0")


class MonthlySummary(AgendaModel):
    year: int
    month: int
    patient_id: Optional[str] = None
    expected: Decimal = ZERO
    received: Decimal = ZERO
    pending: Decimal = ZERO
    projected: Decimal = ZERO
    sessions_count: int = 0
    completed_count: int = 0
    patient_absent_count: int = 0
    scheduled_count: int = 0
    pending_sessions: int = 0


class PatientStatement(AgendaModel):
    patient_id: str
    patient_name: str
    requires_receipt: bool = False
    sessions: List[SessionInstance] = Field(default_factory=list)
    total: Decimal = ZERO
    paid: Decimal = ZERO
    pending: Decimal = ZERO

    @computed_field(alias="fullyPaid")
    @property
    def fully_paid(self) -> bool:
        return self.pending == ZERO and self.total > ZERO

    @computed_field(alias="receiptDue")
    @property
    def receipt_due(self) -> bool:
        return self.requires_receipt and self.paid > ZERO


class Dashboard(AgendaModel):
    year: int
    month: int
    active_patients: int
    summary: MonthlySummary
    upcoming: List[SessionInstance] = Field(default_factory=list)


def _month_instances(
    instances: Iterable[SessionInstance], year: int, month: int
) -> List[SessionInstance]:
    return [item for item in instances if in_month(item.occurs_at, year, month)]


def monthly_summary(
    instances: Iterable[SessionInstance],
    year: int,
    month: int,
    patient_id: Optional[str] = None,
) -> MonthlySummary:
    """Aggregate one month, optionally scoped to a single patient."""

    summary = MonthlySummary(year=year, month=month, patient_id=patient_id)
    for item in _month_instances(instances, year, month):
        if patient_id is not None and item.patient_id != patient_id:
            continue
        if item.status in BILLABLE_STATUSES:
            summary.expected += item.value_snapshot
            summary.sessions_count += 1
            if item.paid:
                summary.received += item.value_snapshot
            else:
                summary.pending += item.value_snapshot
                summary.pending_sessions += 1
            if item.status is SessionStatus.COMPLETED:
                summary.completed_count += 1
            else:
                summary.patient_absent_count += 1
        elif item.status is SessionStatus.SCHEDULED:
            summary.projected += item.value_snapshot
            summary.scheduled_count += 1
    return summary


def patient_statements(
    instances: Iterable[SessionInstance],
    roster: Iterable[Patient],
    year: int,
    month: int,
) -> List[PatientStatement]:
    """Group the month's sessions by patient with per-patient totals.

    Scheduled sessions are listed but only outcomes contribute to the totals.
    Sessions of unknown or unmatched patients are left out.
    """

    patients = {patient.id: patient for patient in roster}
    statements: Dict[str, PatientStatement] = {}
    for item in _month_instances(instances, year, month):
        if item.status in _EXCLUDED_FROM_STATEMENTS:
            continue
        patient = patients.get(item.patient_id)
        if patient is None:
            continue
        statement = statements.get(patient.id)
        if statement is None:
            statement = PatientStatement(
                patient_id=patient.id,
                patient_name=patient.name,
                requires_receipt=patient.requires_receipt,
            )
            statements[patient.id] = statement
        statement.sessions.append(item)
        if item.status in BILLABLE_STATUSES:
            statement.total += item.value_snapshot
            if item.paid:
                statement.paid += item.value_snapshot
            else:
                statement.pending += item.value_snapshot

    for statement in statements.values():
        statement.sessions.sort(key=lambda item: item.occurs_at)
    return sorted(statements.values(), key=lambda statement: statement.patient_name)


def dashboard(
    instances: Iterable[SessionInstance],
    roster: Iterable[Patient],
    year: int,
    month: int,
    now: datetime,
) -> Dashboard:
    """Return headline figures for a month plus upcoming scheduled sessions."""

    items = list(instances)
    patients = list(roster)
    known = {patient.id for patient in patients}
    upcoming = sorted(
        (
            item
            for item in items
            if item.status is SessionStatus.SCHEDULED
            and item.occurs_at >= now
            and item.patient_id in known
        ),
        key=lambda item: item.occurs_at,
    )
    return Dashboard(
        year=year,
        month=month,
        active_patients=sum(1 for p in patients if p.status is PatientStatus.ACTIVE),
        summary=monthly_summary(items, year, month),
        upcoming=upcoming,
    )


__all__ = [
    "MonthlySummary",
    "PatientStatement",
    "Dashboard",
    "monthly_summary",
    "patient_statements",
    "dashboard",
]
