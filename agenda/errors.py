"""Exceptions raised by the scheduling engine.

Every error here is local and recoverable.  The HTTP layer in
:mod:`agenda.main` turns them into error envelopes; library callers are
expected to catch them and report back to the operator.
"""

from __future__ import annotations

from typing import Optional


class AgendaError(Exception):
    """Base class for engine errors."""

    status_code = 400


class ConfigurationError(AgendaError):
    """A patient record violates the recurrence invariant."""

    status_code = 422

    def __init__(self, message: str, *, patient_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.patient_id = patient_id


class DuplicateInsertError(AgendaError):
    """The store already holds an instance for the same patient and day."""

    status_code = 409

    def __init__(self, patient_id: str, day: str) -> None:
        super().__init__(f"patient {patient_id} already has a session on {day}")
        self.patient_id = patient_id
        self.day = day


class IllegalTransitionError(AgendaError):
    """A status change or payment toggle is not allowed from the current state."""

    status_code = 409

    def __init__(self, message: str, *, rule: str) -> None:
        super().__init__(message)
        self.rule = rule


class NotFoundError(AgendaError):
    """A referenced session instance or patient does not exist."""

    status_code = 404

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


__all__ = [
    "AgendaError",
    "ConfigurationError",
    "DuplicateInsertError",
    "IllegalTransitionError",
    "NotFoundError",
]
