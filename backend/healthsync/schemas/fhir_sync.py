from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class FhirSyncScheduledResponse(BaseModel):
    """Acknowledgement for a sync queued in the background."""

    status: Literal["scheduled"] = "scheduled"
    patient_id: int
    fhir_id: str


class ResourceSyncResultResponse(BaseModel):
    """Outcome of one resource type within a sync run."""

    name: str
    status: Literal["success", "skipped", "failed"]
    remote_fhir_id: Optional[str] = None
    fetched: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped_items: int = 0
    error: Optional[str] = None


class PatientSyncReportResponse(BaseModel):
    """Serialised patient sync report."""

    patient_id: int
    fhir_id: str
    patient_action: Optional[Literal["create", "update", "delete", "skip"]] = None
    terminated: bool = False
    resources: list[ResourceSyncResultResponse] = Field(default_factory=list)
    failed_resources: list[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: Optional[datetime] = None
