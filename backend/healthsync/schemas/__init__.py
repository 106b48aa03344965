"""Pydantic schemas for API request/response validation."""

from healthsync.schemas.fhir_sync import (
    FhirSyncScheduledResponse,
    PatientSyncReportResponse,
    ResourceSyncResultResponse,
)

__all__ = [
    "FhirSyncScheduledResponse",
    "PatientSyncReportResponse",
    "ResourceSyncResultResponse",
]
