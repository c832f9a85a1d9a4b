"""HTTP API for the practice agenda.

A thin FastAPI layer over :class:`agenda.service.PracticeService`.  The
service is provided through the :func:`get_service` dependency so tests can
swap in one bound to an in-memory database.  Engine errors are converted into
the standard ``{"success": false, "error": {...}}`` envelope.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Literal, Optional

import structlog
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from structlog.contextvars import bind_contextvars, unbind_contextvars

from agenda.config import get_settings
from agenda.demo import build_demo_practice
from agenda.errors import AgendaError
from agenda.financial import Dashboard, MonthlySummary, PatientStatement
from agenda.generation import GenerationReport
from agenda.models import (
    AgendaModel,
    ExternalEvent,
    Patient,
    PatientStatus,
    Recurrence,
    SessionInstance,
    SessionStatus,
)
from agenda.persistence import SqlRepository
from agenda.service import PracticeService
from agenda.time_utils import local_now, to_local_naive

LOG_LEVEL = get_settings().log_level
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(message)s")

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

_SERVICE: Optional[PracticeService] = None
_SERVICE_LOCK = Lock()


def get_service() -> PracticeService:
    """Return the process-wide service.

    It is backed by the configured database, or by an in-memory demo practice
    when ``AGENDA_DEMO`` is set.
    """

    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            settings = get_settings()
            if settings.demo_mode:
                patients, sessions = build_demo_practice(local_now())
                _SERVICE = PracticeService(settings=settings, patients=patients, sessions=sessions)
                logger.info("demo_practice_loaded", patients=len(patients), sessions=len(sessions))
            else:
                _SERVICE = PracticeService(SqlRepository.from_settings(), settings=settings)
        return _SERVICE


app = FastAPI(title="Practice Agenda API")


@app.middleware("http")
async def inject_trace_id(request: Request, call_next):
    """Attach or propagate a trace identifier for each request."""

    trace_id = request.headers.get("x-trace-id") or uuid.uuid4().hex
    bind_contextvars(trace_id=trace_id, path=request.url.path, method=request.method)
    response = None
    try:
        response = await call_next(request)
        return response
    except Exception:
        logger.exception("request_failed", path=request.url.path, method=request.method)
        raise
    finally:
        if response is not None:
            response.headers["X-Trace-Id"] = trace_id
        unbind_contextvars("trace_id", "path", "method")


class ErrorDetail(BaseModel):
    """Details describing an error response payload."""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    success: Literal[False] = False
    error: ErrorDetail


def _error_details(exc: AgendaError) -> Optional[Dict[str, Any]]:
    details = {
        key: getattr(exc, key)
        for key in ("rule", "patient_id", "day", "kind", "identifier")
        if getattr(exc, key, None) is not None
    }
    return details or None


@app.exception_handler(AgendaError)
async def agenda_error_handler(request: Request, exc: AgendaError) -> JSONResponse:
    """Convert engine errors into the standard error envelope."""

    logger.info("agenda_error", error=type(exc).__name__, message=str(exc))
    payload = ErrorResponse(
        error=ErrorDetail(code=type(exc).__name__, message=str(exc), details=_error_details(exc))
    )
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump())


# ---------------------------------------------------------------------------
# Request and response models
# ---------------------------------------------------------------------------


class PatientCreate(AgendaModel):
    name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    notes: Optional[str] = None
    requires_receipt: bool = False
    recurrence: Recurrence = Recurrence.WEEKLY
    anchor_weekday: Optional[int] = Field(default=None, ge=0, le=6)
    value_per_session: Decimal = Field(default=Decimal("0"), ge=0)
    status: PatientStatus = PatientStatus.ACTIVE

    @model_validator(mode="after")
    def _anchor_matches_recurrence(self) -> "PatientCreate":
        if (self.recurrence is Recurrence.SINGLE) != (self.anchor_weekday is None):
            raise ValueError("anchorWeekday is required unless recurrence is SINGLE")
        return self


class PatientUpdate(AgendaModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    notes: Optional[str] = None
    requires_receipt: Optional[bool] = None
    recurrence: Optional[Recurrence] = None
    anchor_weekday: Optional[int] = Field(default=None, ge=0, le=6)
    value_per_session: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[PatientStatus] = None

    @field_validator(
        "name", "requires_receipt", "recurrence", "value_per_session", "status", mode="before"
    )
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field cannot be null")
        return value


class PatientList(AgendaModel):
    patients: List[Patient]


class GenerateRequest(AgendaModel):
    year: int = Field(ge=1, le=9999)
    month: int = Field(ge=1, le=12)
    session_time: Optional[time] = None


class GenerationSummary(AgendaModel):
    year: int
    month: int
    created: List[SessionInstance]
    skipped_existing: int
    skipped_patients: List[str]

    @classmethod
    def from_report(cls, report: GenerationReport) -> "GenerationSummary":
        return cls(
            year=report.year,
            month=report.month,
            created=report.created,
            skipped_existing=report.skipped_existing,
            skipped_patients=report.skipped_patients,
        )


class SessionCreate(AgendaModel):
    patient_id: str
    occurs_at: datetime
    value: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("occurs_at")
    @classmethod
    def _naive_occurs_at(cls, value: datetime) -> datetime:
        return to_local_naive(value)


class SessionList(AgendaModel):
    sessions: List[SessionInstance]


class StatusRequest(AgendaModel):
    status: SessionStatus


class PaidRequest(AgendaModel):
    paid: bool


class NotesRequest(AgendaModel):
    notes: Optional[str] = None


class ImportRequest(AgendaModel):
    events: List[ExternalEvent]


class ResolveRequest(AgendaModel):
    patient_id: str


class StatementList(AgendaModel):
    year: int
    month: int
    statements: List[PatientStatement]


# ---------------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------------


@app.get("/api/patients", response_model=PatientList)
async def list_patients(service: PracticeService = Depends(get_service)) -> PatientList:
    return PatientList(patients=service.list_patients())


@app.post("/api/patients", response_model=Patient, status_code=201)
async def create_patient(
    req: PatientCreate, service: PracticeService = Depends(get_service)
) -> Patient:
    patient = Patient(id=uuid.uuid4().hex, **req.model_dump())
    return service.add_patient(patient)


@app.get("/api/patients/{patient_id}", response_model=Patient)
async def get_patient(patient_id: str, service: PracticeService = Depends(get_service)) -> Patient:
    return service.get_patient(patient_id)


@app.put("/api/patients/{patient_id}", response_model=Patient)
async def update_patient(
    patient_id: str, req: PatientUpdate, service: PracticeService = Depends(get_service)
) -> Patient:
    return service.update_patient(patient_id, req.model_dump(exclude_unset=True))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@app.post("/api/sessions/generate", response_model=GenerationSummary)
async def generate_sessions(
    req: GenerateRequest, service: PracticeService = Depends(get_service)
) -> GenerationSummary:
    report = service.generate_month(req.year, req.month, session_time=req.session_time)
    return GenerationSummary.from_report(report)


@app.get("/api/sessions", response_model=SessionList)
async def list_sessions(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    patient_id: Optional[str] = Query(default=None, alias="patientId"),
    service: PracticeService = Depends(get_service),
) -> SessionList:
    return SessionList(sessions=service.list_sessions(year, month, patient_id))


@app.post("/api/sessions", response_model=SessionInstance, status_code=201)
async def create_session(
    req: SessionCreate, service: PracticeService = Depends(get_service)
) -> SessionInstance:
    return service.add_session(req.patient_id, req.occurs_at, value=req.value, notes=req.notes)


@app.post("/api/sessions/{session_id}/status", response_model=SessionInstance)
async def change_session_status(
    session_id: str, req: StatusRequest, service: PracticeService = Depends(get_service)
) -> SessionInstance:
    return service.change_status(session_id, req.status)


@app.post("/api/sessions/{session_id}/paid", response_model=SessionInstance)
async def mark_session_paid(
    session_id: str, req: PaidRequest, service: PracticeService = Depends(get_service)
) -> SessionInstance:
    return service.set_paid(session_id, req.paid)


@app.put("/api/sessions/{session_id}/notes", response_model=SessionInstance)
async def update_session_notes(
    session_id: str, req: NotesRequest, service: PracticeService = Depends(get_service)
) -> SessionInstance:
    return service.set_notes(session_id, req.notes)


# ---------------------------------------------------------------------------
# Calendar reconciliation
# ---------------------------------------------------------------------------


@app.post("/api/calendar/import", response_model=SessionList)
async def import_calendar_events(
    req: ImportRequest, service: PracticeService = Depends(get_service)
) -> SessionList:
    return SessionList(sessions=service.import_events(req.events))


@app.post("/api/sessions/{session_id}/resolve", response_model=SessionInstance)
async def resolve_imported_session(
    session_id: str, req: ResolveRequest, service: PracticeService = Depends(get_service)
) -> SessionInstance:
    return service.resolve(session_id, req.patient_id)


@app.delete("/api/sessions/{session_id}", response_model=SessionInstance)
async def reject_imported_session(
    session_id: str, service: PracticeService = Depends(get_service)
) -> SessionInstance:
    return service.reject(session_id)


# ---------------------------------------------------------------------------
# Financial
# ---------------------------------------------------------------------------


@app.get("/api/financial/summary", response_model=MonthlySummary)
async def financial_summary(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    patient_id: Optional[str] = Query(default=None, alias="patientId"),
    service: PracticeService = Depends(get_service),
) -> MonthlySummary:
    return service.monthly_summary(year, month, patient_id)


@app.get("/api/financial/statements", response_model=StatementList)
async def financial_statements(
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    service: PracticeService = Depends(get_service),
) -> StatementList:
    return StatementList(year=year, month=month, statements=service.statements(year, month))


@app.get("/api/dashboard", response_model=Dashboard)
async def dashboard(
    year: Optional[int] = Query(default=None, ge=1, le=9999),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    service: PracticeService = Depends(get_service),
) -> Dashboard:
    return service.dashboard(year, month)
