"""Reconciliation of local patient records against a remote FHIR server."""

from healthsync.services.fhir_sync.actions import SyncAction, resolve_sync_action
from healthsync.services.fhir_sync.channels import (
    InMemoryPatientStore,
    InMemoryResourceChannel,
    SQLPatientStore,
    SQLResourceChannel,
    StoreError,
)
from healthsync.services.fhir_sync.orchestrator import (
    PatientSyncOrchestrator,
    PatientSyncReport,
    run_background_sync,
)
from healthsync.services.fhir_sync.pipeline import (
    PatientRef,
    ResourceRegistration,
    ResourceSyncResult,
    ResourceSyncStatus,
    sync_resource_type,
)

__all__ = [
    "InMemoryPatientStore",
    "InMemoryResourceChannel",
    "PatientRef",
    "PatientSyncOrchestrator",
    "PatientSyncReport",
    "ResourceRegistration",
    "ResourceSyncResult",
    "ResourceSyncStatus",
    "SQLPatientStore",
    "SQLResourceChannel",
    "StoreError",
    "SyncAction",
    "resolve_sync_action",
    "run_background_sync",
    "sync_resource_type",
]
