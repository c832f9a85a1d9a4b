"""SQLAlchemy table metadata for the practice agenda.

Only SQLAlchemy Core ``Table`` objects are used; rows are converted to the
pydantic domain models by :mod:`agenda.persistence`.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)
from sqlalchemy.sql import text

metadata = MetaData()

patients = Table(
    "patients",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("email", String, nullable=True),
    Column("phone", String, nullable=True),
    Column("birth_date", Date, nullable=True),
    Column("notes", Text, nullable=True),
    Column("requires_receipt", Boolean, nullable=False, server_default=text("0")),
    Column("recurrence", String, nullable=False),
    Column("anchor_weekday", Integer, nullable=True),
    Column("value_per_session", Numeric(12, 2), nullable=False, server_default=text("0")),
    Column("status", String, nullable=False, server_default=text("'ACTIVE'")),
)
Index("idx_patients_name", patients.c.name)

session_instances = Table(
    "session_instances",
    metadata,
    Column("id", String, primary_key=True),
    Column("patient_id", String, nullable=False),
    Column("occurs_at", DateTime, nullable=False),
    # YYYY-MM-DD of occurs_at, kept for per-day lookups
    Column("day_key", String(10), nullable=False),
    Column("status", String, nullable=False),
    Column("paid", Boolean, nullable=False, server_default=text("0")),
    Column("value_snapshot", Numeric(12, 2), nullable=False, server_default=text("0")),
    Column("imported_label", String, nullable=True),
    Column("notes", Text, nullable=True),
)
Index(
    "idx_session_instances_patient_day",
    session_instances.c.patient_id,
    session_instances.c.day_key,
)
Index("idx_session_instances_occurs_at", session_instances.c.occurs_at)


__all__ = ["metadata", "patients", "session_instances"]
