"""Default wiring of resource types to FHIR fetches and SQL channels."""

from __future__ import annotations

from typing import TYPE_CHECKING

from healthsync.config import settings
from healthsync.models import (
    DischargeInstruction,
    Hospitalization,
    PatientAllergy,
    PatientCondition,
    PatientGoal,
    PatientMedication,
    SurgeryProcedure,
)
from healthsync.services.fhir.client import FhirClient
from healthsync.services.fhir_sync.channels import SQLPatientStore, SQLResourceChannel
from healthsync.services.fhir_sync.orchestrator import PatientSyncOrchestrator
from healthsync.services.fhir_sync.pipeline import ResourceRegistration

if TYPE_CHECKING:
    from healthsync.database import SessionContextFactory

# Sync order; names double as log stage labels and sandbox override keys.
RESOURCE_TYPES: tuple[tuple[str, str, type], ...] = (
    ("Patient Medical Condition", "get_patient_conditions", PatientCondition),
    ("Patient Allergy", "get_patient_allergies", PatientAllergy),
    ("Patient Medication", "get_patient_medications", PatientMedication),
    ("Patient Hospitalization", "get_patient_hospitalizations", Hospitalization),
    ("Patient Surgery Procedure", "get_patient_surgery_procedures", SurgeryProcedure),
    (
        "Patient Discharge Instruction",
        "get_patient_discharge_instructions",
        DischargeInstruction,
    ),
    ("Patient High Level Goal", "get_patient_high_level_goals", PatientGoal),
)


def build_resource_registrations(
    client: FhirClient,
    session_factory: SessionContextFactory | None = None,
) -> list[ResourceRegistration]:
    return [
        ResourceRegistration(
            name=name,
            fetch=getattr(client, fetch_name),
            channel=SQLResourceChannel(model, session_factory),
        )
        for name, fetch_name, model in RESOURCE_TYPES
    ]


def build_default_orchestrator(
    *,
    client: FhirClient | None = None,
    session_factory: SessionContextFactory | None = None,
) -> PatientSyncOrchestrator:
    """Wire the FHIR client, SQL stores and registrations from settings."""
    fhir_client = client or FhirClient.from_settings()
    return PatientSyncOrchestrator(
        fetch_patient=fhir_client.get_patient,
        patient_store=SQLPatientStore(session_factory),
        registrations=build_resource_registrations(fhir_client, session_factory),
        remote_id_overrides=settings.fhir_remote_id_overrides,
        prune_missing=settings.fhir_sync_prune_missing,
    )
