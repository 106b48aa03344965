"""Background scheduler that periodically re-syncs patients against FHIR."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from healthsync.config import settings
from healthsync.models import Patient
from healthsync.services.fhir_sync.pipeline import PatientRef

if TYPE_CHECKING:
    from healthsync.database import SessionContextFactory
    from healthsync.services.fhir_sync.orchestrator import PatientSyncOrchestrator

logger = logging.getLogger("healthsync.fhir_sync_scheduler")


@dataclass
class FhirSyncRunStats:
    """Telemetry emitted for one scheduler cycle."""

    scanned_patients: int = 0
    synced_patients: int = 0
    partial_patients: int = 0
    terminated_patients: int = 0
    failed_patients: int = 0


async def _load_sync_candidates(
    limit: int,
    session_factory: SessionContextFactory | None = None,
) -> list[PatientRef]:
    if session_factory is None:
        from healthsync.database import get_db_context

        session_factory = get_db_context

    async with session_factory() as db:
        result = await db.execute(
            select(Patient.id, Patient.fhir_id)
            .where(Patient.fhir_id.is_not(None), Patient.fhir_id != "")
            .order_by(
                Patient.fhir_last_synced_at.asc().nullsfirst(),
                Patient.id.asc(),
            )
            .limit(limit)
        )
        return [PatientRef(id=row.id, fhir_id=row.fhir_id) for row in result]


async def _mark_sync_attempted(
    patient_id: int,
    now: datetime,
    session_factory: SessionContextFactory | None = None,
) -> None:
    if session_factory is None:
        from healthsync.database import get_db_context

        session_factory = get_db_context

    async with session_factory() as db:
        await db.execute(
            update(Patient)
            .where(Patient.id == patient_id)
            .values(fhir_last_synced_at=now)
        )


class FhirSyncScheduler:
    """Polling scheduler that walks patients with a FHIR id and syncs them."""

    def __init__(
        self,
        orchestrator: PatientSyncOrchestrator | None = None,
        session_factory: SessionContextFactory | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._session_factory = session_factory
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    def _get_orchestrator(self) -> PatientSyncOrchestrator:
        if self._orchestrator is None:
            from healthsync.services.fhir_sync.registry import build_default_orchestrator

            self._orchestrator = build_default_orchestrator(
                session_factory=self._session_factory
            )
        return self._orchestrator

    async def start(self) -> None:
        """Start background scheduler loop if enabled."""
        if not settings.fhir_background_sync_enabled:
            logger.info("FHIR sync scheduler disabled by configuration")
            return
        if self._task and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run_loop(),
            name="fhir-sync-scheduler",
        )
        logger.info(
            "FHIR sync scheduler started (poll=%ss batch=%s)",
            settings.fhir_sync_poll_interval_seconds,
            settings.fhir_sync_batch_size,
        )

    async def stop(self) -> None:
        """Stop background scheduler loop."""
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("FHIR sync scheduler stopped")

    async def _mark_attempted(self, candidate: PatientRef) -> None:
        try:
            await _mark_sync_attempted(
                candidate.id, datetime.now(UTC), self._session_factory
            )
        except Exception:
            logger.exception(
                "Failed to record FHIR sync attempt for patient=%s", candidate.id
            )

    async def run_once(self) -> FhirSyncRunStats:
        """Run one scheduler cycle (used by background loop and tests)."""
        stats = FhirSyncRunStats()
        candidates = await _load_sync_candidates(
            settings.fhir_sync_batch_size, self._session_factory
        )
        stats.scanned_patients = len(candidates)
        if not candidates:
            return stats

        orchestrator = self._get_orchestrator()
        for candidate in candidates:
            try:
                report = await orchestrator.sync_patient(candidate)
            except Exception:
                stats.failed_patients += 1
                logger.exception("FHIR sync failed for patient=%s", candidate.id)
                continue
            finally:
                await self._mark_attempted(candidate)

            if report.terminated:
                stats.terminated_patients += 1
            elif report.failed_resources:
                stats.partial_patients += 1
            else:
                stats.synced_patients += 1
        return stats

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            started_at = asyncio.get_running_loop().time()
            try:
                stats = await self.run_once()
                if stats.scanned_patients:
                    logger.info(
                        "FHIR sync cycle: scanned=%s synced=%s partial=%s terminated=%s failed=%s",
                        stats.scanned_patients,
                        stats.synced_patients,
                        stats.partial_patients,
                        stats.terminated_patients,
                        stats.failed_patients,
                    )
            except Exception:
                logger.exception("FHIR sync scheduler cycle failed")

            elapsed = asyncio.get_running_loop().time() - started_at
            sleep_seconds = max(
                1,
                settings.fhir_sync_poll_interval_seconds - int(elapsed),
            )
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_seconds)
            except TimeoutError:
                continue


_scheduler_instance: FhirSyncScheduler | None = None


def get_fhir_sync_scheduler() -> FhirSyncScheduler:
    """Get singleton FHIR sync scheduler instance."""
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = FhirSyncScheduler()
    return _scheduler_instance
