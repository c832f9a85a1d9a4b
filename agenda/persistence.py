"""Persistence collaborator for the scheduling engine.

The engine only talks to the narrow :class:`PersistenceGateway` contract.
:class:`SqlRepository` implements it on top of SQLAlchemy Core tables so the
same code runs against the default SQLite file or any configured database
URL.  Ids are generated here, which is why the store adopts the id returned by
``insert_session_instance`` instead of trusting the placeholder it was given.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol

import sqlalchemy as sa
import structlog
from pydantic import ValidationError
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from agenda.db.config import DatabaseSettings, get_database_settings
from agenda.db.models import metadata, patients, session_instances
from agenda.errors import NotFoundError
from agenda.models import PENDING_ID, Patient, SessionInstance
from agenda.time_utils import day_key

logger = structlog.get_logger(__name__)


class PersistenceGateway(Protocol):
    """Storage operations the engine consumes."""

    def list_patients(self) -> List[Patient]: ...

    def insert_patient(self, patient: Patient) -> str: ...

    def update_patient(self, patient_id: str, fields: Mapping[str, Any]) -> None: ...

    def list_session_instances(self) -> List[SessionInstance]: ...

    def insert_session_instance(self, instance: SessionInstance) -> str: ...

    def update_session_instance(self, instance_id: str, fields: Mapping[str, Any]) -> None: ...

    def delete_session_instance(self, instance_id: str) -> None: ...


def new_identifier() -> str:
    return uuid.uuid4().hex


def _column_value(value: Any) -> Any:
    """Return ``value`` in the form stored in a column (enums by value)."""

    return getattr(value, "value", value)


def _columns(fields: Mapping[str, Any], table: sa.Table) -> Dict[str, Any]:
    values = {key: _column_value(value) for key, value in fields.items() if key in table.c}
    values.pop("id", None)
    return values


class SqlRepository:
    """SQLAlchemy-backed implementation of :class:`PersistenceGateway`."""

    def __init__(self, bind: Engine | sessionmaker[Session]) -> None:
        if isinstance(bind, sessionmaker):
            self._session_factory = bind
            self._engine: Optional[Engine] = None
        else:
            self._engine = bind
            self._session_factory = sessionmaker(
                bind=bind,
                autoflush=False,
                expire_on_commit=False,
                future=True,
            )

    @classmethod
    def from_settings(cls, settings: Optional[DatabaseSettings] = None) -> "SqlRepository":
        settings = settings or get_database_settings()
        engine = sa.create_engine(settings.url, **settings.engine_options())
        repository = cls(engine)
        repository.create_all()
        return repository

    def create_all(self) -> None:
        """Create the agenda tables if they do not exist."""

        if self._engine is None:
            with self.session_scope() as session:
                metadata.create_all(session.connection())
            return
        metadata.create_all(self._engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Context manager yielding a session committed on success."""

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def list_patients(self) -> List[Patient]:
        with self.session_scope() as session:
            rows = session.execute(select(patients).order_by(patients.c.name)).mappings().all()
        roster: List[Patient] = []
        for row in rows:
            try:
                roster.append(Patient.model_validate(dict(row)))
            except ValidationError:
                logger.warning("patient_row_invalid", patient_id=row.get("id"), exc_info=True)
        return roster

    def insert_patient(self, patient: Patient) -> str:
        patient_id = patient.id if patient.id and patient.id != PENDING_ID else new_identifier()
        values = _columns(patient.model_dump(), patients)
        with self.session_scope() as session:
            session.execute(insert(patients).values(id=patient_id, **values))
        return patient_id

    def update_patient(self, patient_id: str, fields: Mapping[str, Any]) -> None:
        values = _columns(fields, patients)
        if not values:
            return
        with self.session_scope() as session:
            result = session.execute(
                update(patients).where(patients.c.id == patient_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("patient", patient_id)

    # ------------------------------------------------------------------
    # Session instances
    # ------------------------------------------------------------------

    def list_session_instances(self) -> List[SessionInstance]:
        with self.session_scope() as session:
            rows = (
                session.execute(
                    select(session_instances).order_by(
                        session_instances.c.occurs_at, session_instances.c.id
                    )
                )
                .mappings()
                .all()
            )
        instances: List[SessionInstance] = []
        for row in rows:
            data = dict(row)
            data.pop("day_key", None)
            try:
                instances.append(SessionInstance.model_validate(data))
            except ValidationError:
                logger.warning("session_row_invalid", session_id=row.get("id"), exc_info=True)
        return instances

    def insert_session_instance(self, instance: SessionInstance) -> str:
        instance_id = instance.id if instance.id and instance.id != PENDING_ID else new_identifier()
        values = _columns(instance.model_dump(), session_instances)
        values["day_key"] = instance.day_key
        with self.session_scope() as session:
            session.execute(insert(session_instances).values(id=instance_id, **values))
        return instance_id

    def update_session_instance(self, instance_id: str, fields: Mapping[str, Any]) -> None:
        values = _columns(fields, session_instances)
        if "occurs_at" in values:
            values["day_key"] = day_key(values["occurs_at"])
        if not values:
            return
        with self.session_scope() as session:
            result = session.execute(
                update(session_instances)
                .where(session_instances.c.id == instance_id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError("session", instance_id)

    def delete_session_instance(self, instance_id: str) -> None:
        with self.session_scope() as session:
            result = session.execute(
                delete(session_instances).where(session_instances.c.id == instance_id)
            )
            if result.rowcount == 0:
                raise NotFoundError("session", instance_id)


__all__ = ["PersistenceGateway", "SqlRepository", "new_identifier"]
