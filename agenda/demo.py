"""Deterministic demo practice.

Builds a roster of twenty patients and the current month's sessions for
walkthroughs and manual testing.  ``now`` and the random generator are
injected so the output is reproducible.
"""

from __future__ import annotations

import random
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional, Tuple

from agenda.models import (
    Patient,
    PatientStatus,
    Recurrence,
    SessionInstance,
    SessionStatus,
)
from agenda.recurrence import anchor_dates, due_dates

FIRST_NAMES = [
    "Ana", "Bruno", "Carla", "Daniel", "Eduarda", "Felipe", "Gabriela", "Hugo",
    "Isabela", "João", "Karina", "Lucas", "Mariana", "Nicolas", "Olivia", "Pedro",
    "Quintino", "Rafaela", "Samuel", "Tatiana",
]
LAST_NAMES = [
    "Silva", "Santos", "Oliveira", "Souza", "Rodrigues", "Ferreira", "Alves", "Pereira",
    "Lima", "Gomes", "Costa", "Ribeiro", "Martins", "Carvalho", "Almeida", "Lopes",
    "Soares", "Fernandes", "Vieira", "Barbosa",
]

BIWEEKLY_PATIENTS = 3


def _demo_identifier(rng: random.Random) -> str:
    return uuid.UUID(int=rng.getrandbits(128), version=4).hex


def build_demo_roster(rng: random.Random) -> List[Patient]:
    roster: List[Patient] = []
    for index, (first, last) in enumerate(zip(FIRST_NAMES, LAST_NAMES)):
        roster.append(
            Patient(
                id=_demo_identifier(rng),
                name=f"{first} {last}",
                email=f"{first.lower()}@example.com",
                phone=f"(11) 9{rng.randrange(10000):04d}-{rng.randrange(10000):04d}",
                birth_date=date(1990, 1, 1),
                notes="Demo patient.",
                requires_receipt=rng.random() > 0.5,
                recurrence=Recurrence.BIWEEKLY if index < BIWEEKLY_PATIENTS else Recurrence.WEEKLY,
                # Monday to Friday
                anchor_weekday=(index % 5) + 1,
                value_per_session=Decimal(150 + rng.randrange(11) * 10),
                status=PatientStatus.ACTIVE,
            )
        )
    return roster


def _past_outcome(rng: random.Random) -> Tuple[SessionStatus, bool]:
    roll = rng.random()
    if roll > 0.2:
        status = SessionStatus.COMPLETED
    elif roll > 0.1:
        status = SessionStatus.PATIENT_ABSENT
    else:
        status = SessionStatus.CANCELLED
    paid = status is SessionStatus.COMPLETED and rng.random() > 0.3
    return status, paid


def build_demo_sessions(
    roster: List[Patient], now: datetime, rng: random.Random
) -> List[SessionInstance]:
    """Return the month-of-``now`` sessions for ``roster``.

    Session hours spread from 09:00 by the weekday's position in the month.
    Sessions before ``now`` receive a random outcome.
    """

    sessions: List[SessionInstance] = []
    for patient in roster:
        due = set(due_dates(patient, now.year, now.month))
        for position, day in enumerate(anchor_dates(patient.anchor_weekday, now.year, now.month)):
            if day not in due:
                continue
            occurs_at = datetime.combine(day, time(9 + position % 8, 0))
            status, paid = SessionStatus.SCHEDULED, False
            if occurs_at < now:
                status, paid = _past_outcome(rng)
            sessions.append(
                SessionInstance(
                    id=_demo_identifier(rng),
                    patient_id=patient.id,
                    occurs_at=occurs_at,
                    status=status,
                    paid=paid,
                    value_snapshot=patient.value_per_session,
                )
            )
    return sessions


def build_demo_practice(
    now: datetime, rng: Optional[random.Random] = None
) -> Tuple[List[Patient], List[SessionInstance]]:
    """Return ``(roster, sessions)`` for a demo practice as seen at ``now``."""

    rng = rng or random.Random(0)
    roster = build_demo_roster(rng)
    return roster, build_demo_sessions(roster, now, rng)


__all__ = ["build_demo_practice", "build_demo_roster", "build_demo_sessions"]
