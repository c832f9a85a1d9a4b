from datetime import datetime
from decimal import Decimal

import pytest

from agenda.errors import IllegalTransitionError, NotFoundError
from agenda.lifecycle import (
    OUTCOME_STATUSES,
    can_transition,
    set_notes,
    set_paid,
    toggle_paid,
    transition_status,
)
from agenda.models import SessionInstance, SessionStatus


@pytest.fixture()
def scheduled(store):
    return store.insert(
        SessionInstance(
            patient_id='p1',
            occurs_at=datetime(2026, 6, 3, 10, 0),
            value_snapshot=Decimal('200'),
        )
    )


@pytest.fixture()
def unconfirmed(store):
    return store.insert(
        SessionInstance(
            patient_id='p1',
            occurs_at=datetime(2026, 6, 10, 10, 0),
            status=SessionStatus.UNCONFIRMED,
        )
    )


@pytest.mark.parametrize('target', sorted(OUTCOME_STATUSES, key=lambda s: s.value))
def test_scheduled_moves_to_every_outcome(store, scheduled, target):
    updated = transition_status(store, scheduled.id, target)
    assert updated.status is target
    assert store.get(scheduled.id).status is target


def test_outcome_reverts_to_scheduled_and_clears_payment(store, scheduled):
    transition_status(store, scheduled.id, SessionStatus.COMPLETED)
    set_paid(store, scheduled.id, True)

    reverted = transition_status(store, scheduled.id, SessionStatus.SCHEDULED)
    assert reverted.status is SessionStatus.SCHEDULED
    assert reverted.paid is False


def test_outcome_to_outcome_is_rejected(store, scheduled):
    transition_status(store, scheduled.id, SessionStatus.COMPLETED)
    with pytest.raises(IllegalTransitionError) as excinfo:
        transition_status(store, scheduled.id, SessionStatus.CANCELLED)
    assert excinfo.value.rule == 'outcome-requires-scheduled'
    assert store.get(scheduled.id).status is SessionStatus.COMPLETED


def test_same_status_is_a_no_op(store, scheduled):
    assert transition_status(store, scheduled.id, SessionStatus.SCHEDULED) == scheduled


def test_unconfirmed_cannot_be_transitioned(store, unconfirmed):
    with pytest.raises(IllegalTransitionError) as excinfo:
        transition_status(store, unconfirmed.id, SessionStatus.COMPLETED)
    assert excinfo.value.rule == 'unconfirmed-requires-resolution'


def test_nothing_returns_to_unconfirmed(store, scheduled):
    with pytest.raises(IllegalTransitionError) as excinfo:
        transition_status(store, scheduled.id, SessionStatus.UNCONFIRMED)
    assert excinfo.value.rule == 'unconfirmed-is-initial-only'


def test_transition_accepts_raw_status_values(store, scheduled):
    updated = transition_status(store, scheduled.id, 'COMPLETED')
    assert updated.status is SessionStatus.COMPLETED


def test_transition_unknown_session(store):
    with pytest.raises(NotFoundError):
        transition_status(store, 'missing', SessionStatus.COMPLETED)


def test_can_transition_table():
    assert can_transition(SessionStatus.SCHEDULED, SessionStatus.THERAPIST_ABSENT)
    assert can_transition(SessionStatus.PATIENT_ABSENT, SessionStatus.SCHEDULED)
    assert not can_transition(SessionStatus.COMPLETED, SessionStatus.PATIENT_ABSENT)
    assert not can_transition(SessionStatus.UNCONFIRMED, SessionStatus.SCHEDULED)


def test_payment_requires_outcome(store, scheduled, unconfirmed):
    for instance in (scheduled, unconfirmed):
        with pytest.raises(IllegalTransitionError) as excinfo:
            set_paid(store, instance.id, True)
        assert excinfo.value.rule == 'payment-requires-outcome'
        assert store.get(instance.id).paid is False


def test_payment_on_non_billable_outcome_is_recorded(store, scheduled):
    transition_status(store, scheduled.id, SessionStatus.CANCELLED)
    assert set_paid(store, scheduled.id, True).paid is True


def test_toggle_paid_flips_flag(store, scheduled):
    transition_status(store, scheduled.id, SessionStatus.PATIENT_ABSENT)
    assert toggle_paid(store, scheduled.id).paid is True
    assert toggle_paid(store, scheduled.id).paid is False


def test_set_notes_strips_and_clears(store, scheduled):
    assert set_notes(store, scheduled.id, '  brought forms  ').notes == 'brought forms'
    assert set_notes(store, scheduled.id, '   ').notes is None
