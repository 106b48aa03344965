"""Typed channels between the sync engine and the local record store.

A channel is bound to one local entity type and addresses rows by the
owning patient plus the remote FHIR id. SQL implementations open one
short-lived session per operation so every mutation commits on its own;
in-memory implementations back tests and local demos.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from sqlalchemy import delete, inspect, select, update
from sqlalchemy.exc import IntegrityError

from healthsync.models import Base, Patient

if TYPE_CHECKING:
    from healthsync.database import SessionContextFactory

ModelT = TypeVar("ModelT", bound=Base)
RecordT_co = TypeVar("RecordT_co", covariant=True)

# Columns a remote payload may never overwrite on an existing row.
PROTECTED_COLUMNS = frozenset({"id", "patient_id", "fhir_id", "created_at"})


class StoreError(RuntimeError):
    """Raised when the local store rejects a write."""


class ResourceChannel(Protocol[RecordT_co]):
    async def get_by_fhir_id(self, patient_id: int, fhir_id: str) -> RecordT_co | None:
        ...

    async def create(self, data: Mapping[str, Any]) -> RecordT_co:
        ...

    async def update_by_fhir_id(
        self, data: Mapping[str, Any], *, patient_id: int, fhir_id: str
    ) -> None:
        ...

    async def delete_by_fhir_id(self, *, patient_id: int, fhir_id: str) -> None:
        ...

    async def list_fhir_ids(self, patient_id: int) -> set[str]:
        ...


class PatientStore(Protocol):
    async def get_by_fhir_id(self, fhir_id: str) -> Any | None:
        ...

    async def update_by_fhir_id(self, data: Mapping[str, Any], *, fhir_id: str) -> None:
        ...

    async def delete_by_fhir_id(self, fhir_id: str) -> None:
        ...


class _SQLModelStore(Generic[ModelT]):
    def __init__(
        self,
        model: type[ModelT],
        session_factory: SessionContextFactory | None = None,
    ) -> None:
        self.model = model
        self._session_factory = session_factory
        self._columns = {attr.key for attr in inspect(model).column_attrs}

    def _session(self):
        if self._session_factory is None:
            from healthsync.database import get_db_context

            return get_db_context()
        return self._session_factory()

    def _column_values(
        self,
        data: Mapping[str, Any],
        *,
        exclude: Iterable[str] = (),
    ) -> dict[str, Any]:
        excluded = set(exclude)
        return {
            key: value
            for key, value in data.items()
            if key in self._columns and key not in excluded
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(model={self.model.__name__})>"


class SQLResourceChannel(_SQLModelStore[ModelT]):
    """Resource channel backed by SQLAlchemy for one health record model."""

    def _match(self, patient_id: int, fhir_id: str):
        return (self.model.patient_id == patient_id, self.model.fhir_id == fhir_id)

    async def get_by_fhir_id(self, patient_id: int, fhir_id: str) -> ModelT | None:
        async with self._session() as db:
            return await db.scalar(
                select(self.model).where(*self._match(patient_id, fhir_id))
            )

    async def create(self, data: Mapping[str, Any]) -> ModelT:
        record = self.model(**self._column_values(data, exclude={"id"}))
        try:
            async with self._session() as db:
                db.add(record)
                await db.flush()
                await db.refresh(record)
        except IntegrityError as exc:
            raise StoreError(
                f"{self.model.__tablename__} insert rejected for "
                f"fhir_id={data.get('fhir_id')}: {exc.orig}"
            ) from exc
        return record

    async def update_by_fhir_id(
        self, data: Mapping[str, Any], *, patient_id: int, fhir_id: str
    ) -> None:
        values = self._column_values(data, exclude=PROTECTED_COLUMNS)
        if not values:
            return
        try:
            async with self._session() as db:
                await db.execute(
                    update(self.model)
                    .where(*self._match(patient_id, fhir_id))
                    .values(**values)
                )
        except IntegrityError as exc:
            raise StoreError(
                f"{self.model.__tablename__} update rejected for fhir_id={fhir_id}: {exc.orig}"
            ) from exc

    async def delete_by_fhir_id(self, *, patient_id: int, fhir_id: str) -> None:
        async with self._session() as db:
            await db.execute(delete(self.model).where(*self._match(patient_id, fhir_id)))

    async def list_fhir_ids(self, patient_id: int) -> set[str]:
        async with self._session() as db:
            result = await db.scalars(
                select(self.model.fhir_id).where(self.model.patient_id == patient_id)
            )
            return set(result.all())


class SQLPatientStore(_SQLModelStore[Patient]):
    """Patient lookups and mutations keyed by the remote FHIR id."""

    def __init__(self, session_factory: SessionContextFactory | None = None) -> None:
        super().__init__(Patient, session_factory)

    async def get_by_fhir_id(self, fhir_id: str) -> Patient | None:
        async with self._session() as db:
            return await db.scalar(select(Patient).where(Patient.fhir_id == fhir_id))

    async def update_by_fhir_id(self, data: Mapping[str, Any], *, fhir_id: str) -> None:
        values = self._column_values(
            data, exclude={"id", "fhir_id", "fhir_last_synced_at", "created_at"}
        )
        if not values:
            return
        try:
            async with self._session() as db:
                await db.execute(
                    update(Patient).where(Patient.fhir_id == fhir_id).values(**values)
                )
        except IntegrityError as exc:
            raise StoreError(f"patients update rejected for fhir_id={fhir_id}: {exc.orig}") from exc

    async def delete_by_fhir_id(self, fhir_id: str) -> None:
        async with self._session() as db:
            await db.execute(delete(Patient).where(Patient.fhir_id == fhir_id))


class InMemoryResourceChannel:
    """In-memory resource channel for tests and local demos."""

    def __init__(self, rows: Iterable[Mapping[str, Any]] = ()) -> None:
        self._rows: dict[tuple[int, str], dict[str, Any]] = {}
        self._next_id = 1
        for row in rows:
            self._insert(row)

    def _insert(self, data: Mapping[str, Any]) -> dict[str, Any]:
        patient_id = data.get("patient_id")
        fhir_id = data.get("fhir_id")
        if patient_id is None or not fhir_id:
            raise StoreError("patient_id and fhir_id are required")
        key = (patient_id, fhir_id)
        if key in self._rows:
            raise StoreError(
                f"duplicate row for patient_id={patient_id} fhir_id={fhir_id}"
            )
        row = {**data, "id": self._next_id}
        self._rows[key] = row
        self._next_id += 1
        return row

    async def get_by_fhir_id(self, patient_id: int, fhir_id: str) -> dict[str, Any] | None:
        row = self._rows.get((patient_id, fhir_id))
        return dict(row) if row is not None else None

    async def create(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return dict(self._insert(data))

    async def update_by_fhir_id(
        self, data: Mapping[str, Any], *, patient_id: int, fhir_id: str
    ) -> None:
        row = self._rows.get((patient_id, fhir_id))
        if row is None:
            return
        row.update(
            {key: value for key, value in data.items() if key not in PROTECTED_COLUMNS}
        )

    async def delete_by_fhir_id(self, *, patient_id: int, fhir_id: str) -> None:
        self._rows.pop((patient_id, fhir_id), None)

    async def list_fhir_ids(self, patient_id: int) -> set[str]:
        return {fhir_id for (owner_id, fhir_id) in self._rows if owner_id == patient_id}

    def rows(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self._rows.values()]


class InMemoryPatientStore:
    """In-memory patient store for tests and local demos."""

    def __init__(self, patients: Iterable[Mapping[str, Any]] = ()) -> None:
        self._patients: dict[str, dict[str, Any]] = {}
        for patient in patients:
            if not patient.get("fhir_id"):
                raise StoreError("fhir_id is required")
            self._patients[patient["fhir_id"]] = dict(patient)

    async def get_by_fhir_id(self, fhir_id: str) -> dict[str, Any] | None:
        patient = self._patients.get(fhir_id)
        return dict(patient) if patient is not None else None

    async def update_by_fhir_id(self, data: Mapping[str, Any], *, fhir_id: str) -> None:
        patient = self._patients.get(fhir_id)
        if patient is None:
            return
        patient.update(
            {
                key: value
                for key, value in data.items()
                if key not in {"id", "fhir_id", "created_at"}
            }
        )

    async def delete_by_fhir_id(self, fhir_id: str) -> None:
        self._patients.pop(fhir_id, None)
