"""In-memory session instance store.

The store owns every :class:`~agenda.models.SessionInstance`.  All reads and
mutations go through one lock so that check-then-insert and
read-modify-write sequences are atomic.  It enforces the per-day uniqueness
rule: a patient holds at most one confirmed instance per calendar day, and a
new confirmed instance is refused when the patient already has any instance
on that day.  Provisional (``UNCONFIRMED``) instances are proposals and may
coexist with anything.

When a :class:`~agenda.persistence.PersistenceGateway` is attached every
mutation is written through inside the same critical section and the store
adopts the id the gateway assigns.
"""

from __future__ import annotations

from datetime import date
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from agenda.errors import DuplicateInsertError, NotFoundError
from agenda.models import PENDING_ID, SessionInstance, SessionStatus
from agenda.persistence import PersistenceGateway, new_identifier
from agenda.time_utils import day_key, in_month, to_local_naive

Mutation = Callable[[SessionInstance], Mapping[str, Any]]


class SessionStore:
    """Thread-safe collection of session instances keyed by id."""

    def __init__(
        self,
        instances: Iterable[SessionInstance] = (),
        *,
        gateway: Optional[PersistenceGateway] = None,
    ) -> None:
        self._lock = Lock()
        self._gateway = gateway
        self._instances: Dict[str, SessionInstance] = {}
        for instance in instances:
            instance_id = instance.id if instance.id != PENDING_ID else new_identifier()
            self._instances[instance_id] = instance.model_copy(update={"id": instance_id})

    @classmethod
    def from_gateway(cls, gateway: PersistenceGateway) -> "SessionStore":
        """Build a store primed with the gateway's persisted instances."""

        return cls(gateway.list_session_instances(), gateway=gateway)

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> List[SessionInstance]:
        """Return copies of every instance ordered by time."""

        with self._lock:
            items = [instance.model_copy() for instance in self._instances.values()]
        return sorted(items, key=lambda item: (item.occurs_at, item.id))

    def list_month(
        self, year: int, month: int, patient_id: Optional[str] = None
    ) -> List[SessionInstance]:
        return [
            instance
            for instance in self.snapshot()
            if in_month(instance.occurs_at, year, month)
            and (patient_id is None or instance.patient_id == patient_id)
        ]

    def get(self, instance_id: str) -> SessionInstance:
        with self._lock:
            instance = self._instances.get(instance_id)
            if instance is None:
                raise NotFoundError("session", instance_id)
            return instance.model_copy()

    def exists_for_day(self, patient_id: str, day: date | str) -> bool:
        """Return ``True`` if ``patient_id`` has any instance on ``day``."""

        key = day if isinstance(day, str) else day_key(day)
        with self._lock:
            return self._has_instance_locked(patient_id, key)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(self, instance: SessionInstance) -> SessionInstance:
        """Append ``instance`` and return the stored copy with its real id.

        Raises :class:`DuplicateInsertError` when a confirmed instance would
        land on a day the patient already occupies.
        """

        with self._lock:
            if not instance.is_provisional and instance.is_matched:
                if self._has_instance_locked(instance.patient_id, instance.day_key):
                    raise DuplicateInsertError(instance.patient_id, instance.day_key)
            if self._gateway is not None:
                instance_id = self._gateway.insert_session_instance(instance)
            elif instance.id and instance.id != PENDING_ID and instance.id not in self._instances:
                instance_id = instance.id
            else:
                instance_id = new_identifier()
            stored = instance.model_copy(update={"id": instance_id})
            self._instances[instance_id] = stored
            return stored.model_copy()

    def mutate(self, instance_id: str, mutation: Mutation) -> SessionInstance:
        """Apply ``mutation`` atomically and return the updated instance.

        ``mutation`` receives a copy of the current instance and returns the
        fields to change; it may raise to abort without side effects.
        """

        with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise NotFoundError("session", instance_id)
            changes = dict(mutation(current.model_copy()))
            changes.pop("id", None)
            if "occurs_at" in changes:
                changes["occurs_at"] = to_local_naive(changes["occurs_at"])
            if not changes:
                return current.model_copy()
            updated = current.model_copy(update=changes)
            if not updated.is_provisional and updated.is_matched:
                moved = (
                    current.is_provisional
                    or updated.patient_id != current.patient_id
                    or updated.day_key != current.day_key
                )
                if moved and self._has_confirmed_locked(
                    updated.patient_id, updated.day_key, exclude=instance_id
                ):
                    raise DuplicateInsertError(updated.patient_id, updated.day_key)
            if self._gateway is not None:
                self._gateway.update_session_instance(instance_id, changes)
            self._instances[instance_id] = updated
            return updated.model_copy()

    def update(self, instance_id: str, fields: Mapping[str, Any]) -> SessionInstance:
        return self.mutate(instance_id, lambda _current: fields)

    def delete(
        self,
        instance_id: str,
        guard: Optional[Callable[[SessionInstance], None]] = None,
    ) -> SessionInstance:
        """Remove ``instance_id``; ``guard`` may raise to veto the deletion."""

        with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise NotFoundError("session", instance_id)
            if guard is not None:
                guard(current.model_copy())
            if self._gateway is not None:
                self._gateway.delete_session_instance(instance_id)
            del self._instances[instance_id]
            return current

    # ------------------------------------------------------------------
    # Helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _has_instance_locked(self, patient_id: str, key: str) -> bool:
        return any(
            item.patient_id == patient_id and item.day_key == key
            for item in self._instances.values()
        )

    def _has_confirmed_locked(self, patient_id: str, key: str, *, exclude: str) -> bool:
        return any(
            item_id != exclude
            and item.patient_id == patient_id
            and item.day_key == key
            and item.status is not SessionStatus.UNCONFIRMED
            for item_id, item in self._instances.items()
        )


__all__ = ["SessionStore", "Mutation"]
