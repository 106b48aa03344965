#!/usr/bin/env python3
"""Run one FHIR sync inline for a local patient and print the report."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parents[1]
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from sqlalchemy import select  # noqa: E402

from healthsync.database import SessionContextFactory, close_db, get_db_context  # noqa: E402
from healthsync.logging import configure_logging  # noqa: E402
from healthsync.models import Patient  # noqa: E402
from healthsync.services.fhir_sync.pipeline import PatientRef  # noqa: E402
from healthsync.services.fhir_sync.registry import build_default_orchestrator  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reconcile one local patient against the configured FHIR server."
    )
    parser.add_argument(
        "--patient-id",
        type=int,
        required=True,
        help="Local patient ID to sync.",
    )
    parser.add_argument(
        "--fhir-id",
        help="Override the patient's stored FHIR id for this run.",
    )
    return parser.parse_args()


async def _resolve_patient(
    patient_id: int,
    fhir_id: str | None = None,
    session_factory: SessionContextFactory = get_db_context,
) -> PatientRef:
    """Load the local patient; an overriding FHIR id must not belong to another patient."""
    async with session_factory() as db:
        patient = await db.get(Patient, patient_id)
        if patient is None:
            raise ValueError(f"Patient {patient_id} not found.")
        if fhir_id and fhir_id != patient.fhir_id:
            owner_id = await db.scalar(select(Patient.id).where(Patient.fhir_id == fhir_id))
            if owner_id is not None:
                raise ValueError(
                    f"FHIR id {fhir_id} already belongs to local patient {owner_id}."
                )
        ref = PatientRef(id=patient.id, fhir_id=fhir_id or patient.fhir_id)

    if not ref.fhir_id:
        raise ValueError(f"Patient {ref.id} has no FHIR id.")
    return ref


async def _run(args: argparse.Namespace) -> int:
    try:
        try:
            patient = await _resolve_patient(args.patient_id, args.fhir_id)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2

        orchestrator = build_default_orchestrator()
        try:
            report = await orchestrator.sync_patient(patient)
        except Exception as exc:
            print(f"FHIR sync failed: {exc}", file=sys.stderr)
            return 1
    finally:
        await close_db()

    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.failed_resources else 0


def main() -> int:
    configure_logging()
    return asyncio.run(_run(_parse_args()))


if __name__ == "__main__":
    raise SystemExit(main())
