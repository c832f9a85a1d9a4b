"""Domain types for patients, session instances and imported events.

The models are pydantic ``BaseModel`` subclasses so they validate input from
the persistence collaborator and the HTTP layer alike.  Field names are
snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agenda.errors import ConfigurationError
from agenda.time_utils import day_key, to_local_naive

UNMATCHED = "unmatched"
PENDING_ID = "pending"


class Recurrence(str, enum.Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    SINGLE = "SINGLE"


class PatientStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    PATIENT_ABSENT = "PATIENT_ABSENT"
    THERAPIST_ABSENT = "THERAPIST_ABSENT"
    CANCELLED = "CANCELLED"
    UNCONFIRMED = "UNCONFIRMED"


class AgendaModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Patient(AgendaModel):
    """A billing and scheduling subject."""

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    notes: Optional[str] = None
    requires_receipt: bool = False
    recurrence: Recurrence = Recurrence.WEEKLY
    anchor_weekday: Optional[int] = Field(default=None, ge=0, le=6)
    value_per_session: Decimal = Field(default=Decimal("0"), ge=0)
    status: PatientStatus = PatientStatus.ACTIVE

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    def check_recurrence(self) -> None:
        """Raise ``ConfigurationError`` unless the anchor matches the recurrence.

        The anchor weekday must be set for every recurrence except ``SINGLE``
        and must be absent for ``SINGLE``.
        """

        if self.recurrence is Recurrence.SINGLE:
            if self.anchor_weekday is not None:
                raise ConfigurationError(
                    f"patient {self.id} is SINGLE but has an anchor weekday",
                    patient_id=self.id,
                )
            return
        if self.anchor_weekday is None:
            raise ConfigurationError(
                f"patient {self.id} recurs {self.recurrence.value} without an anchor weekday",
                patient_id=self.id,
            )

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not Recurrence.SINGLE


class SessionInstance(AgendaModel):
    """One concrete scheduled occurrence."""

    id: str = PENDING_ID
    patient_id: str = UNMATCHED
    occurs_at: datetime
    status: SessionStatus = SessionStatus.SCHEDULED
    paid: bool = False
    value_snapshot: Decimal = Field(default=Decimal("0"), ge=0)
    imported_label: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("occurs_at")
    @classmethod
    def _naive_occurs_at(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    @property
    def day_key(self) -> str:
        return day_key(self.occurs_at)

    @property
    def is_provisional(self) -> bool:
        return self.status is SessionStatus.UNCONFIRMED

    @property
    def is_matched(self) -> bool:
        return self.patient_id != UNMATCHED


class ExternalEvent(AgendaModel):
    """A ``{title, dateTime}`` entry handed over by an external calendar."""

    title: str
    starts_at: datetime = Field(alias="dateTime")

    @field_validator("starts_at")
    @classmethod
    def _naive_starts_at(cls, value: datetime) -> datetime:
        return to_local_naive(value)


__all__ = [
    "UNMATCHED",
    "PENDING_ID",
    "AgendaModel",
    "Recurrence",
    "PatientStatus",
    "SessionStatus",
    "Patient",
    "SessionInstance",
    "ExternalEvent",
]
