import os
import sys
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

# Ensure the repository root is on sys.path so tests can import the agenda package
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from agenda.models import Patient, PatientStatus, Recurrence  # noqa: E402
from agenda.persistence import SqlRepository  # noqa: E402
from agenda.service import PracticeService  # noqa: E402
from agenda.store import SessionStore  # noqa: E402

# 2026-06-15 09:00 is a Monday in a month with four Wednesdays (3, 10, 17, 24).
FIXED_NOW = datetime(2026, 6, 15, 9, 0)
WEDNESDAY = 3


@pytest.fixture()
def make_patient() -> Callable[..., Patient]:
    """Return a factory building patients with sensible defaults."""

    counter = {'n': 0}

    def _factory(**overrides) -> Patient:
        counter['n'] += 1
        data = {
            'id': f"p{counter['n']}",
            'name': f"Patient {counter['n']}",
            'recurrence': Recurrence.WEEKLY,
            'anchor_weekday': WEDNESDAY,
            'value_per_session': Decimal('200'),
            'status': PatientStatus.ACTIVE,
        }
        data.update(overrides)
        return Patient(**data)

    return _factory


@pytest.fixture()
def store() -> SessionStore:
    return SessionStore()


@dataclass
class DatabaseContext:
    """Holds state for the ephemeral in-memory SQLite database."""

    engine: sa.engine.Engine
    repository: SqlRepository


@pytest.fixture(scope='function')
def in_memory_db() -> Iterator[DatabaseContext]:
    """Provide an isolated in-memory SQLite database for each test."""

    engine = sa.create_engine(
        'sqlite+pysqlite:///:memory:',
        future=True,
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    repository = SqlRepository(engine)
    repository.create_all()
    try:
        yield DatabaseContext(engine=engine, repository=repository)
    finally:
        engine.dispose()


@pytest.fixture()
def service(in_memory_db: DatabaseContext) -> PracticeService:
    return PracticeService(in_memory_db.repository, clock=lambda: FIXED_NOW)


@pytest.fixture(scope='function')
def api_client(service: PracticeService) -> Iterator[TestClient]:
    """Yield a FastAPI test client bound to the in-memory database."""

    from agenda import main

    main.app.dependency_overrides[main.get_service] = lambda: service
    try:
        with TestClient(main.app) as client:
            yield client
    finally:
        main.app.dependency_overrides.pop(main.get_service, None)
