from datetime import date

import pytest

from agenda.errors import ConfigurationError
from agenda.models import Recurrence
from agenda.recurrence import anchor_dates, due_dates
from agenda.time_utils import sunday_weekday


def test_anchor_dates_use_sunday_based_weekdays():
    assert anchor_dates(3, 2026, 6) == [
        date(2026, 6, 3),
        date(2026, 6, 10),
        date(2026, 6, 17),
        date(2026, 6, 24),
    ]
    # 2026-02-01 is a Sunday
    assert anchor_dates(0, 2026, 2)[0] == date(2026, 2, 1)


def test_weekly_returns_every_matching_date(make_patient):
    patient = make_patient(recurrence=Recurrence.WEEKLY)
    dates = due_dates(patient, 2026, 6)
    assert len(dates) == 4
    assert all(sunday_weekday(d) == patient.anchor_weekday for d in dates)


def test_biweekly_takes_first_third_fifth_occurrence(make_patient):
    patient = make_patient(recurrence=Recurrence.BIWEEKLY)
    assert due_dates(patient, 2026, 6) == [date(2026, 6, 3), date(2026, 6, 17)]
    # July 2026 has five Wednesdays
    assert due_dates(patient, 2026, 7) == [
        date(2026, 7, 1),
        date(2026, 7, 15),
        date(2026, 7, 29),
    ]


def test_biweekly_cadence_restarts_each_month(make_patient):
    patient = make_patient(recurrence=Recurrence.BIWEEKLY)
    july = due_dates(patient, 2026, 7)
    august = due_dates(patient, 2026, 8)
    # 2026-07-29 is the fifth Wednesday; 2026-08-05 is the next week.
    assert july[-1] == date(2026, 7, 29)
    assert august[0] == date(2026, 8, 5)
    assert (august[0] - july[-1]).days == 7


def test_monthly_returns_single_first_occurrence(make_patient):
    patient = make_patient(recurrence=Recurrence.MONTHLY, anchor_weekday=1)
    assert due_dates(patient, 2026, 6) == [date(2026, 6, 1)]


@pytest.mark.parametrize('weekday', range(7))
def test_monthly_always_yields_exactly_one_date(make_patient, weekday):
    patient = make_patient(recurrence=Recurrence.MONTHLY, anchor_weekday=weekday)
    for month in range(1, 13):
        assert len(due_dates(patient, 2027, month)) == 1


def test_single_patients_are_rejected(make_patient):
    patient = make_patient(recurrence=Recurrence.SINGLE, anchor_weekday=None)
    with pytest.raises(ConfigurationError):
        due_dates(patient, 2026, 6)


def test_missing_anchor_raises_configuration_error(make_patient):
    patient = make_patient(anchor_weekday=None)
    with pytest.raises(ConfigurationError) as excinfo:
        due_dates(patient, 2026, 6)
    assert excinfo.value.patient_id == patient.id


def test_invalid_month_raises_value_error(make_patient):
    with pytest.raises(ValueError):
        due_dates(make_patient(), 2026, 13)
