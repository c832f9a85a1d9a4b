"""Status and payment lifecycle of session instances.

Transitions are triggered manually by the operator.  The table below is the
whole state machine; ``UNCONFIRMED`` only leaves through reconciliation
(:func:`agenda.reconciliation.resolve_unconfirmed`) or deletion.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, Mapping, Optional

import structlog

from agenda.errors import IllegalTransitionError
from agenda.models import SessionInstance, SessionStatus
from agenda.store import SessionStore

logger = structlog.get_logger(__name__)

OUTCOME_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {
        SessionStatus.COMPLETED,
        SessionStatus.PATIENT_ABSENT,
        SessionStatus.CANCELLED,
        SessionStatus.THERAPIST_ABSENT,
    }
)

BILLABLE_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.PATIENT_ABSENT}
)

TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.SCHEDULED: OUTCOME_STATUSES,
    SessionStatus.COMPLETED: frozenset({SessionStatus.SCHEDULED}),
    SessionStatus.PATIENT_ABSENT: frozenset({SessionStatus.SCHEDULED}),
    SessionStatus.CANCELLED: frozenset({SessionStatus.SCHEDULED}),
    SessionStatus.THERAPIST_ABSENT: frozenset({SessionStatus.SCHEDULED}),
    SessionStatus.UNCONFIRMED: frozenset(),
}

_PAYABLE_BLOCKED = frozenset({SessionStatus.SCHEDULED, SessionStatus.UNCONFIRMED})


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]


def _transition_changes(instance: SessionInstance, target: SessionStatus) -> Mapping[str, Any]:
    current = instance.status
    if current is target:
        return {}
    if current is SessionStatus.UNCONFIRMED:
        raise IllegalTransitionError(
            f"session {instance.id} is unconfirmed; resolve or reject it first",
            rule="unconfirmed-requires-resolution",
        )
    if target is SessionStatus.UNCONFIRMED:
        raise IllegalTransitionError(
            f"session {instance.id} cannot return to UNCONFIRMED",
            rule="unconfirmed-is-initial-only",
        )
    if not can_transition(current, target):
        raise IllegalTransitionError(
            f"session {instance.id} cannot move from {current.value} to {target.value}",
            rule="outcome-requires-scheduled",
        )
    changes: Dict[str, Any] = {"status": target}
    if target is SessionStatus.SCHEDULED:
        changes["paid"] = False
    return changes


def transition_status(
    store: SessionStore, instance_id: str, target: SessionStatus
) -> SessionInstance:
    """Move ``instance_id`` to ``target`` or raise ``IllegalTransitionError``."""

    target = SessionStatus(target)
    updated = store.mutate(instance_id, lambda current: _transition_changes(current, target))
    logger.info("session_status_changed", session_id=instance_id, status=updated.status.value)
    return updated


def _paid_changes(instance: SessionInstance, paid: bool) -> Mapping[str, Any]:
    if instance.status in _PAYABLE_BLOCKED:
        raise IllegalTransitionError(
            f"session {instance.id} is {instance.status.value}; payment can only be "
            "recorded once the session has an outcome",
            rule="payment-requires-outcome",
        )
    if instance.paid is paid:
        return {}
    return {"paid": paid}


def set_paid(store: SessionStore, instance_id: str, paid: bool) -> SessionInstance:
    """Record whether ``instance_id`` has been paid."""

    updated = store.mutate(instance_id, lambda current: _paid_changes(current, bool(paid)))
    logger.info("session_payment_recorded", session_id=instance_id, paid=updated.paid)
    return updated


def toggle_paid(store: SessionStore, instance_id: str) -> SessionInstance:
    return store.mutate(instance_id, lambda current: _paid_changes(current, not current.paid))


def set_notes(store: SessionStore, instance_id: str, notes: Optional[str]) -> SessionInstance:
    cleaned = (notes or "").strip() or None
    return store.update(instance_id, {"notes": cleaned})


__all__ = [
    "OUTCOME_STATUSES",
    "BILLABLE_STATUSES",
    "TRANSITIONS",
    "can_transition",
    "transition_status",
    "set_paid",
    "toggle_paid",
    "set_notes",
]
