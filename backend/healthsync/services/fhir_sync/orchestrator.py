"""Patient-level FHIR sync orchestration."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from healthsync.logging import sync_stage
from healthsync.services.fhir_sync.actions import SyncAction, resolve_sync_action
from healthsync.services.fhir_sync.channels import PatientStore
from healthsync.services.fhir_sync.pipeline import (
    ResourceRegistration,
    ResourceSyncResult,
    ResourceSyncStatus,
    SyncPatient,
    sync_resource_type,
)

logger = logging.getLogger("healthsync.fhir_sync")

PatientFetcher = Callable[[str], Awaitable[Mapping[str, Any] | None]]

PATIENT_STAGE = "Patient"


@dataclass
class PatientSyncReport:
    """Outcome of one sync run for one patient."""

    patient_id: int
    fhir_id: str
    patient_action: SyncAction | None = None
    terminated: bool = False
    resources: list[ResourceSyncResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def failed_resources(self) -> list[str]:
        return [
            result.name
            for result in self.resources
            if result.status is ResourceSyncStatus.FAILED
        ]

    @property
    def succeeded(self) -> bool:
        return not self.failed_resources

    def to_dict(self) -> dict[str, Any]:
        return {
            "patient_id": self.patient_id,
            "fhir_id": self.fhir_id,
            "patient_action": self.patient_action.value if self.patient_action else None,
            "terminated": self.terminated,
            "resources": [result.to_dict() for result in self.resources],
            "failed_resources": self.failed_resources,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def _fhir_id_of(record: Any) -> str | None:
    if isinstance(record, Mapping):
        return record.get("fhir_id")
    return getattr(record, "fhir_id", None)


class PatientSyncOrchestrator:
    """Reconciles a local patient and its health records with the FHIR server.

    The patient record is resolved first. A patient that disappeared
    remotely is deleted locally and ends the run; otherwise every
    registered resource type is reconciled in order, each isolated from
    the failures of the others.
    """

    def __init__(
        self,
        fetch_patient: PatientFetcher,
        patient_store: PatientStore,
        registrations: Sequence[ResourceRegistration],
        remote_id_overrides: Mapping[str, str] | None = None,
        prune_missing: bool = False,
    ) -> None:
        self._fetch_patient = fetch_patient
        self._patient_store = patient_store
        self.registrations = tuple(registrations)
        self.remote_id_overrides = dict(remote_id_overrides or {})
        self.prune_missing = prune_missing

    async def sync_patient(self, patient: SyncPatient) -> PatientSyncReport:
        """Run one sync for ``patient``.

        Raises:
            ValueError: If the patient has no FHIR id.
            Exception: Whatever the remote patient fetch or the local
                patient lookup/mutation raises; resource-type failures
                never propagate.
        """
        if not patient.fhir_id:
            raise ValueError(f"Patient {patient.id} has no FHIR id to sync against")

        report = PatientSyncReport(patient_id=patient.id, fhir_id=patient.fhir_id)
        logger.info("Starting FHIR sync for patient %s", patient.id)

        with sync_stage(PATIENT_STAGE):
            remote_patient, existing = await asyncio.gather(
                self._fetch_patient(patient.fhir_id),
                self._patient_store.get_by_fhir_id(patient.fhir_id),
            )
            action = resolve_sync_action(remote_patient, existing is not None)
            report.patient_action = action
            logger.debug("action=%s", action.value)

            if action is SyncAction.DELETE:
                await self._patient_store.delete_by_fhir_id(patient.fhir_id)
                report.terminated = True
                report.finished_at = datetime.now(UTC)
                logger.info(
                    "Patient %s no longer exists remotely; deleted locally and stopped sync",
                    patient.id,
                )
                return report

            if action is SyncAction.UPDATE:
                await self._patient_store.update_by_fhir_id(
                    remote_patient,
                    fhir_id=_fhir_id_of(existing) or patient.fhir_id,
                )
            elif action is SyncAction.CREATE:
                logger.info(
                    "Remote patient %s has no local record; patient provisioning is "
                    "handled outside the sync",
                    patient.fhir_id,
                )

        for registration in self.registrations:
            result = await sync_resource_type(
                registration,
                patient,
                remote_id_overrides=self.remote_id_overrides,
                prune_missing=self.prune_missing,
            )
            report.resources.append(result)

        report.finished_at = datetime.now(UTC)
        if report.failed_resources:
            logger.warning(
                "FHIR sync finished for patient %s with failures: %s",
                patient.id,
                ", ".join(report.failed_resources),
            )
        else:
            logger.info("FHIR sync completed for patient %s", patient.id)
        return report


_background_tasks: set[asyncio.Task[PatientSyncReport]] = set()


def _on_background_sync_done(task: asyncio.Task[PatientSyncReport]) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.info("Background FHIR sync %s was cancelled", task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background FHIR sync %s failed: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )


def run_background_sync(
    patient: SyncPatient,
    orchestrator: PatientSyncOrchestrator | None = None,
) -> asyncio.Task[PatientSyncReport]:
    """Schedule a sync for ``patient`` on the running event loop.

    Returns immediately. Awaiting the returned task yields the report, or
    raises the patient-level failure that aborted the run.
    """
    if orchestrator is None:
        from healthsync.services.fhir_sync.registry import build_default_orchestrator

        orchestrator = build_default_orchestrator()

    task = asyncio.create_task(
        orchestrator.sync_patient(patient),
        name=f"fhir-sync-patient-{patient.id}",
    )
    _background_tasks.add(task)
    task.add_done_callback(_on_background_sync_done)
    return task
