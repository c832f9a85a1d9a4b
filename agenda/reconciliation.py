"""Reconciliation of externally imported calendar events.

Imported events are never trusted: each one becomes an ``UNCONFIRMED``
instance, pre-filled with a patient when the title equals that patient's full
name exactly (case-sensitive).  An operator then resolves the instance onto a
patient or rejects it, which deletes it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set

import structlog

from agenda.errors import IllegalTransitionError, NotFoundError
from agenda.models import (
    UNMATCHED,
    ExternalEvent,
    Patient,
    SessionInstance,
    SessionStatus,
)
from agenda.store import SessionStore

logger = structlog.get_logger(__name__)


def match_patient(title: str, roster: Iterable[Patient]) -> Optional[Patient]:
    """Return the first patient whose full name equals ``title`` exactly."""

    for patient in roster:
        if patient.name == title:
            return patient
    return None


def plan_import(
    events: Iterable[ExternalEvent],
    existing: Iterable[SessionInstance],
    roster: Iterable[Patient],
) -> List[SessionInstance]:
    """Return the provisional instances to create for ``events``.

    An event is dropped when a non-provisional instance already sits at the
    exact same date-time, or when the same title/time appeared earlier in the
    batch.
    """

    patients = list(roster)
    confirmed_times = {
        item.occurs_at for item in existing if item.status is not SessionStatus.UNCONFIRMED
    }
    seen: Set[tuple] = set()
    planned: List[SessionInstance] = []

    for event in events:
        if event.starts_at in confirmed_times:
            logger.info(
                "calendar_event_already_scheduled",
                starts_at=event.starts_at.isoformat(),
            )
            continue
        marker = (event.title, event.starts_at)
        if marker in seen:
            continue
        seen.add(marker)

        patient = match_patient(event.title, patients)
        planned.append(
            SessionInstance(
                patient_id=patient.id if patient else UNMATCHED,
                occurs_at=event.starts_at,
                status=SessionStatus.UNCONFIRMED,
                paid=False,
                value_snapshot=patient.value_per_session if patient else Decimal("0"),
                imported_label=event.title,
            )
        )
    return planned


def import_external_events(
    events: Iterable[ExternalEvent],
    store: SessionStore,
    roster: Iterable[Patient],
) -> List[SessionInstance]:
    """Create provisional instances for ``events`` and return them."""

    created: List[SessionInstance] = []
    for instance in plan_import(events, store.snapshot(), roster):
        stored = store.insert(instance)
        created.append(stored)
        logger.info(
            "calendar_event_imported",
            session_id=stored.id,
            matched=stored.is_matched,
            starts_at=stored.occurs_at.isoformat(),
        )
    return created


def _require_unconfirmed(instance: SessionInstance) -> None:
    if instance.status is not SessionStatus.UNCONFIRMED:
        raise IllegalTransitionError(
            f"session {instance.id} is {instance.status.value}, not UNCONFIRMED",
            rule="reconciliation-requires-unconfirmed",
        )


def resolve_unconfirmed(
    store: SessionStore,
    instance_id: str,
    patient_id: str,
    roster: Iterable[Patient] | Mapping[str, Patient],
) -> SessionInstance:
    """Confirm an imported instance as a scheduled session of ``patient_id``.

    The instance takes the patient's *current* rate.  ``NotFoundError`` is
    raised, and the instance left untouched, when the patient is unknown.
    """

    if isinstance(roster, Mapping):
        patients: Dict[str, Patient] = dict(roster)
    else:
        patients = {patient.id: patient for patient in roster}
    patient = patients.get(patient_id)
    if patient is None:
        raise NotFoundError("patient", patient_id)

    def _resolve(current: SessionInstance) -> Mapping[str, object]:
        _require_unconfirmed(current)
        return {
            "patient_id": patient.id,
            "value_snapshot": patient.value_per_session,
            "status": SessionStatus.SCHEDULED,
            "imported_label": None,
        }

    resolved = store.mutate(instance_id, _resolve)
    logger.info("unconfirmed_session_resolved", session_id=instance_id, patient_id=patient.id)
    return resolved


def reject_unconfirmed(store: SessionStore, instance_id: str) -> SessionInstance:
    """Discard an imported instance the operator does not recognise."""

    removed = store.delete(instance_id, guard=_require_unconfirmed)
    logger.info("unconfirmed_session_rejected", session_id=instance_id)
    return removed


__all__ = [
    "match_patient",
    "plan_import",
    "import_external_events",
    "resolve_unconfirmed",
    "reject_unconfirmed",
]
