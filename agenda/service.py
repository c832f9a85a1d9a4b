"""Application service tying the roster, the store and persistence together.

The engine modules are plain functions over explicit arguments; this class is
the one place that holds the roster cache, the :class:`SessionStore` and the
clock, and it is what the HTTP layer talks to.
"""

from __future__ import annotations

from datetime import datetime, time
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional

import structlog
from pydantic import ValidationError

from agenda import financial, generation, lifecycle, reconciliation
from agenda.config import AgendaSettings, get_settings
from agenda.errors import ConfigurationError, NotFoundError
from agenda.models import (
    PENDING_ID,
    ExternalEvent,
    Patient,
    SessionInstance,
    SessionStatus,
)
from agenda.persistence import PersistenceGateway, new_identifier
from agenda.store import SessionStore
from agenda.time_utils import Clock, local_now

logger = structlog.get_logger(__name__)


class PracticeService:
    """Roster management plus every scheduling and billing operation."""

    def __init__(
        self,
        gateway: Optional[PersistenceGateway] = None,
        *,
        settings: Optional[AgendaSettings] = None,
        clock: Clock = local_now,
        patients: Iterable[Patient] = (),
        sessions: Iterable[SessionInstance] = (),
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock
        self._gateway = gateway
        self._roster_lock = Lock()
        if gateway is not None:
            self._patients: Dict[str, Patient] = {p.id: p for p in gateway.list_patients()}
            self.store = SessionStore.from_gateway(gateway)
        else:
            self._patients = {p.id: p for p in patients}
            self.store = SessionStore(sessions)

    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------

    def list_patients(self) -> List[Patient]:
        with self._roster_lock:
            return sorted(self._patients.values(), key=lambda p: p.name)

    def get_patient(self, patient_id: str) -> Patient:
        with self._roster_lock:
            patient = self._patients.get(patient_id)
        if patient is None:
            raise NotFoundError("patient", patient_id)
        return patient

    def add_patient(self, patient: Patient) -> Patient:
        """Register ``patient``; the recurrence invariant is enforced here."""

        patient.check_recurrence()
        with self._roster_lock:
            if self._gateway is not None:
                patient_id = self._gateway.insert_patient(patient)
            elif patient.id and patient.id != PENDING_ID and patient.id not in self._patients:
                patient_id = patient.id
            else:
                patient_id = new_identifier()
            stored = patient.model_copy(update={"id": patient_id})
            self._patients[patient_id] = stored
        logger.info("patient_added", patient_id=patient_id, recurrence=stored.recurrence.value)
        return stored

    def update_patient(self, patient_id: str, fields: Mapping[str, Any]) -> Patient:
        """Apply ``fields`` to a patient.

        Rate changes only affect sessions created afterwards; existing
        instances keep their value snapshot.
        """

        with self._roster_lock:
            current = self._patients.get(patient_id)
            if current is None:
                raise NotFoundError("patient", patient_id)
            changes = {key: value for key, value in fields.items() if key != "id"}
            try:
                candidate = Patient.model_validate({**current.model_dump(), **changes})
            except ValidationError as exc:
                raise ConfigurationError(
                    f"patient {patient_id} update is invalid: {exc.errors()[0]['msg']}",
                    patient_id=patient_id,
                ) from exc
            candidate.check_recurrence()
            if self._gateway is not None:
                self._gateway.update_patient(
                    patient_id, candidate.model_dump(include=set(changes))
                )
            self._patients[patient_id] = candidate
        logger.info("patient_updated", patient_id=patient_id, fields=sorted(changes))
        return candidate

    def _roster_snapshot(self) -> List[Patient]:
        with self._roster_lock:
            return list(self._patients.values())

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def generate_month(
        self, year: int, month: int, *, session_time: Optional[time] = None
    ) -> generation.GenerationReport:
        return generation.generate_month(
            self._roster_snapshot(),
            self.store,
            year,
            month,
            session_time=session_time or self.settings.default_session_time,
        )

    def list_sessions(
        self, year: int, month: int, patient_id: Optional[str] = None
    ) -> List[SessionInstance]:
        return self.store.list_month(year, month, patient_id)

    def get_session(self, session_id: str) -> SessionInstance:
        return self.store.get(session_id)

    def add_session(
        self,
        patient_id: str,
        occurs_at: datetime,
        *,
        value: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> SessionInstance:
        """Schedule a one-off session, e.g. for a ``SINGLE`` patient."""

        patient = self.get_patient(patient_id)
        instance = SessionInstance(
            patient_id=patient.id,
            occurs_at=occurs_at,
            status=SessionStatus.SCHEDULED,
            paid=False,
            value_snapshot=patient.value_per_session if value is None else value,
            notes=notes,
        )
        stored = self.store.insert(instance)
        logger.info("session_added", session_id=stored.id, patient_id=patient.id)
        return stored

    def change_status(self, session_id: str, status: SessionStatus) -> SessionInstance:
        return lifecycle.transition_status(self.store, session_id, status)

    def set_paid(self, session_id: str, paid: bool) -> SessionInstance:
        return lifecycle.set_paid(self.store, session_id, paid)

    def set_notes(self, session_id: str, notes: Optional[str]) -> SessionInstance:
        return lifecycle.set_notes(self.store, session_id, notes)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def import_events(self, events: Iterable[ExternalEvent]) -> List[SessionInstance]:
        return reconciliation.import_external_events(events, self.store, self._roster_snapshot())

    def resolve(self, session_id: str, patient_id: str) -> SessionInstance:
        return reconciliation.resolve_unconfirmed(
            self.store, session_id, patient_id, self._roster_snapshot()
        )

    def reject(self, session_id: str) -> SessionInstance:
        return reconciliation.reject_unconfirmed(self.store, session_id)

    # ------------------------------------------------------------------
    # Financial
    # ------------------------------------------------------------------

    def monthly_summary(
        self, year: int, month: int, patient_id: Optional[str] = None
    ) -> financial.MonthlySummary:
        if patient_id is not None:
            self.get_patient(patient_id)
        return financial.monthly_summary(self.store.snapshot(), year, month, patient_id)

    def statements(self, year: int, month: int) -> List[financial.PatientStatement]:
        return financial.patient_statements(
            self.store.snapshot(), self._roster_snapshot(), year, month
        )

    def dashboard(self, year: Optional[int] = None, month: Optional[int] = None) -> financial.Dashboard:
        now = self.clock()
        return financial.dashboard(
            self.store.snapshot(),
            self._roster_snapshot(),
            year or now.year,
            month or now.month,
            now,
        )


__all__ = ["PracticeService"]
