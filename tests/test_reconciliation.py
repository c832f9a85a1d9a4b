from datetime import datetime, time, timezone
from decimal import Decimal

import pytest

from agenda.errors import DuplicateInsertError, IllegalTransitionError, NotFoundError
from agenda.generation import generate_month
from agenda.models import UNMATCHED, ExternalEvent, SessionInstance, SessionStatus
from agenda.reconciliation import (
    import_external_events,
    match_patient,
    plan_import,
    reject_unconfirmed,
    resolve_unconfirmed,
)


def _event(title, when):
    return ExternalEvent(title=title, dateTime=when)


@pytest.fixture()
def roster(make_patient):
    return [
        make_patient(name='Ana Silva', value_per_session=Decimal('180')),
        make_patient(name='Bruno Santos', value_per_session=Decimal('220')),
    ]


def test_match_is_exact_and_case_sensitive(roster):
    assert match_patient('Ana Silva', roster) is roster[0]
    assert match_patient('ana silva', roster) is None
    assert match_patient('Ana', roster) is None


def test_import_creates_unconfirmed_instances(store, roster):
    created = import_external_events(
        [
            _event('Ana Silva', datetime(2026, 6, 4, 15, 0)),
            _event('Dentist', datetime(2026, 6, 5, 11, 0)),
        ],
        store,
        roster,
    )

    assert len(created) == 2
    matched, unmatched = created
    assert matched.status is SessionStatus.UNCONFIRMED
    assert matched.patient_id == roster[0].id
    assert matched.value_snapshot == Decimal('180')
    assert matched.imported_label == 'Ana Silva'
    assert unmatched.patient_id == UNMATCHED
    assert unmatched.value_snapshot == Decimal('0')
    assert unmatched.imported_label == 'Dentist'
    assert len(store) == 2


def test_event_at_confirmed_time_is_skipped(store, roster):
    generate_month(roster[:1], store, 2026, 6, session_time=time(10, 0))
    created = import_external_events(
        [_event('Somebody else', datetime(2026, 6, 3, 10, 0))], store, roster
    )
    assert created == []


def test_event_at_unconfirmed_time_is_not_skipped(store, roster):
    when = datetime(2026, 6, 4, 15, 0)
    import_external_events([_event('Ana Silva', when)], store, roster)
    created = import_external_events([_event('Bruno Santos', when)], store, roster)
    assert len(created) == 1


def test_repeated_event_in_batch_imported_once(store, roster):
    when = datetime(2026, 6, 4, 15, 0)
    planned = plan_import(
        [_event('Ana Silva', when), _event('Ana Silva', when)], store.snapshot(), roster
    )
    assert len(planned) == 1


def test_import_is_not_idempotent_across_calls(store, roster):
    event = _event('Dentist', datetime(2026, 6, 5, 11, 0))
    import_external_events([event], store, roster)
    import_external_events([event], store, roster)
    assert len(store) == 2


def test_resolve_sets_patient_rate_and_status(store, roster):
    (imported,) = import_external_events(
        [_event('Dentist', datetime(2026, 6, 5, 11, 0))], store, roster
    )
    resolved = resolve_unconfirmed(store, imported.id, roster[1].id, roster)

    assert resolved.status is SessionStatus.SCHEDULED
    assert resolved.patient_id == roster[1].id
    assert resolved.value_snapshot == Decimal('220')
    assert resolved.imported_label is None
    assert resolved.paid is False


def test_resolve_uses_current_rate(store, roster):
    (imported,) = import_external_events(
        [_event('Ana Silva', datetime(2026, 6, 4, 15, 0))], store, roster
    )
    raised = {p.id: p for p in roster}
    raised[roster[0].id] = roster[0].model_copy(update={'value_per_session': Decimal('250')})
    resolved = resolve_unconfirmed(store, imported.id, roster[0].id, raised)
    assert resolved.value_snapshot == Decimal('250')


def test_resolve_unknown_patient_leaves_instance_untouched(store, roster):
    (imported,) = import_external_events(
        [_event('Dentist', datetime(2026, 6, 5, 11, 0))], store, roster
    )
    with pytest.raises(NotFoundError):
        resolve_unconfirmed(store, imported.id, 'nobody', roster)
    assert store.get(imported.id) == imported


def test_resolve_requires_unconfirmed(store, roster):
    scheduled = store.insert(
        SessionInstance(patient_id=roster[0].id, occurs_at=datetime(2026, 6, 3, 10, 0))
    )
    with pytest.raises(IllegalTransitionError) as excinfo:
        resolve_unconfirmed(store, scheduled.id, roster[1].id, roster)
    assert excinfo.value.rule == 'reconciliation-requires-unconfirmed'


def test_resolve_onto_occupied_day_is_refused(store, roster):
    generate_month(roster[:1], store, 2026, 6, session_time=time(10, 0))
    (imported,) = import_external_events(
        [_event('Dentist', datetime(2026, 6, 3, 17, 0))], store, roster
    )
    with pytest.raises(DuplicateInsertError):
        resolve_unconfirmed(store, imported.id, roster[0].id, roster)
    assert store.get(imported.id).status is SessionStatus.UNCONFIRMED


def test_reject_deletes_unconfirmed(store, roster):
    (imported,) = import_external_events(
        [_event('Dentist', datetime(2026, 6, 5, 11, 0))], store, roster
    )
    removed = reject_unconfirmed(store, imported.id)
    assert removed.id == imported.id
    assert len(store) == 0


def test_reject_refuses_confirmed_sessions(store, roster):
    scheduled = store.insert(
        SessionInstance(patient_id=roster[0].id, occurs_at=datetime(2026, 6, 3, 10, 0))
    )
    with pytest.raises(IllegalTransitionError):
        reject_unconfirmed(store, scheduled.id)
    assert len(store) == 1


def test_timezone_aware_events_are_stored_as_local_time(store, roster):
    aware = datetime(2026, 6, 4, 15, 0, tzinfo=timezone.utc)
    (imported,) = import_external_events([_event('Dentist', aware)], store, roster)

    assert imported.occurs_at.tzinfo is None
    assert imported.occurs_at == aware.astimezone().replace(tzinfo=None)
    assert [item.id for item in store.list_month(2026, 6)] == [imported.id]


def test_timezone_aware_event_matches_confirmed_local_time(store, roster):
    local = datetime(2026, 6, 3, 10, 0)
    store.insert(SessionInstance(patient_id=roster[0].id, occurs_at=local))
    aware = local.astimezone(timezone.utc)

    assert import_external_events([_event('Ana Silva', aware)], store, roster) == []
