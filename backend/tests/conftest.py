import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "true")


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
async def session_factory():
    """Committing session factory over a private in-memory SQLite database."""
    from healthsync.database import enable_sqlite_foreign_keys, session_context_factory
    from healthsync.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    event.listen(engine.sync_engine, "connect", enable_sqlite_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield session_context_factory(async_sessionmaker(engine, expire_on_commit=False))

    await engine.dispose()


@pytest.fixture()
def make_patient(session_factory):
    from healthsync.models import Patient

    async def _make_patient(**overrides):
        values = {"first_name": "Ada", "last_name": "Okafor", "fhir_id": "7341277"}
        values.update(overrides)
        async with session_factory() as db:
            patient = Patient(**values)
            db.add(patient)
            await db.flush()
            await db.refresh(patient)
            return patient

    return _make_patient


@asynccontextmanager
async def _no_lifespan(app):
    yield


class FakePatientSession:
    """Stands in for an AsyncSession in API tests; only ``get`` is used."""

    def __init__(self, patients=()):
        self.patients = {patient.id: patient for patient in patients}

    async def get(self, _model, patient_id):
        return self.patients.get(patient_id)


@pytest.fixture()
def api_patients():
    return [
        SimpleNamespace(id=5, fhir_id="7341277"),
        SimpleNamespace(id=6, fhir_id=None),
    ]


@pytest.fixture()
def client(api_patients):
    from healthsync.api import fhir_sync, health
    from healthsync.database import get_db

    app = FastAPI(lifespan=_no_lifespan)
    app.include_router(health.router)
    app.include_router(fhir_sync.router, prefix="/api/v1")

    async def _override_get_db():
        yield FakePatientSession(api_patients)

    app.dependency_overrides[get_db] = _override_get_db
    return TestClient(app, raise_server_exceptions=False)
