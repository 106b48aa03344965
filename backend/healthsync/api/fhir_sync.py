import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from healthsync.database import get_db
from healthsync.models import Patient
from healthsync.schemas.fhir_sync import (
    FhirSyncScheduledResponse,
    PatientSyncReportResponse,
)
from healthsync.services.fhir_sync.orchestrator import PatientSyncOrchestrator
from healthsync.services.fhir_sync.pipeline import PatientRef
from healthsync.services.fhir_sync.registry import build_default_orchestrator

logger = logging.getLogger("healthsync.fhir_sync")

router = APIRouter(prefix="/patients", tags=["FHIR Sync"])


def get_patient_sync_orchestrator() -> PatientSyncOrchestrator:
    """Dependency returning the orchestrator wired from settings."""
    return build_default_orchestrator()


async def _get_syncable_patient(patient_id: int, db: AsyncSession) -> PatientRef:
    patient = await db.get(Patient, patient_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    if not patient.fhir_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Patient is not linked to a FHIR record",
        )
    return PatientRef(id=patient.id, fhir_id=patient.fhir_id)


async def _sync_in_background(
    orchestrator: PatientSyncOrchestrator,
    patient: PatientRef,
) -> None:
    try:
        await orchestrator.sync_patient(patient)
    except Exception:
        logger.exception("Background FHIR sync failed for patient=%s", patient.id)


@router.post(
    "/{patient_id}/fhir-sync",
    response_model=FhirSyncScheduledResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def schedule_patient_sync(
    patient_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    orchestrator: PatientSyncOrchestrator = Depends(get_patient_sync_orchestrator),
):
    """Queue a FHIR sync for a patient and return immediately."""
    patient = await _get_syncable_patient(patient_id, db)
    background_tasks.add_task(_sync_in_background, orchestrator, patient)
    logger.info("Scheduled FHIR sync for patient=%s", patient.id)
    return FhirSyncScheduledResponse(patient_id=patient.id, fhir_id=patient.fhir_id)


@router.post("/{patient_id}/fhir-sync/run", response_model=PatientSyncReportResponse)
async def run_patient_sync(
    patient_id: int,
    db: AsyncSession = Depends(get_db),
    orchestrator: PatientSyncOrchestrator = Depends(get_patient_sync_orchestrator),
):
    """Run a FHIR sync inline and return the per-resource report."""
    patient = await _get_syncable_patient(patient_id, db)
    try:
        report = await orchestrator.sync_patient(patient)
    except Exception as exc:
        logger.exception("FHIR sync failed for patient=%s", patient.id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"FHIR sync failed: {exc}",
        ) from exc
    return PatientSyncReportResponse.model_validate(report.to_dict())
