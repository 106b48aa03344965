"""Per-resource-type reconciliation pipeline."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Protocol

from healthsync.logging import sync_stage
from healthsync.services.fhir_sync.actions import SyncAction, resolve_sync_action
from healthsync.services.fhir_sync.channels import ResourceChannel

logger = logging.getLogger("healthsync.fhir_sync")

# fetch(remote_patient_id, local_patient_id) -> mapped items, or None for "no data"
ResourceFetcher = Callable[[str, int], Awaitable[Sequence[Mapping[str, Any]] | None]]


class SyncPatient(Protocol):
    id: int
    fhir_id: str | None


@dataclass(frozen=True)
class PatientRef:
    """Detached (id, fhir_id) pair, safe to hand across sessions and tasks."""

    id: int
    fhir_id: str | None


class ResourceSyncStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ResourceRegistration:
    """Binds a resource type name to its remote fetch function and local channel."""

    name: str
    fetch: ResourceFetcher
    channel: ResourceChannel[Any]


@dataclass
class ResourceSyncResult:
    """Outcome of reconciling one resource type for one patient."""

    name: str
    status: ResourceSyncStatus = ResourceSyncStatus.SUCCESS
    remote_fhir_id: str | None = None
    fetched: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped_items: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def resolve_remote_patient_id(
    name: str,
    patient_fhir_id: str,
    overrides: Mapping[str, str] | None = None,
) -> str:
    """Pick the remote patient id to query for ``name``.

    An override only wins when it is a non-blank string; otherwise the
    patient's own FHIR id is used.
    """
    override = (overrides or {}).get(name) or ""
    return override.strip() or patient_fhir_id


async def _apply_item(
    channel: ResourceChannel[Any],
    *,
    patient_id: int,
    fhir_id: str,
    item: Mapping[str, Any],
    result: ResourceSyncResult,
) -> None:
    existing = await channel.get_by_fhir_id(patient_id, fhir_id)
    action = resolve_sync_action(item, existing is not None)
    logger.debug("fhir_id=%s action=%s", fhir_id, action.value)

    if action is SyncAction.DELETE:
        await channel.delete_by_fhir_id(patient_id=patient_id, fhir_id=fhir_id)
        result.deleted += 1
    elif action is SyncAction.CREATE:
        await channel.create({**item, "patient_id": patient_id})
        result.created += 1
    elif action is SyncAction.UPDATE:
        await channel.update_by_fhir_id(item, patient_id=patient_id, fhir_id=fhir_id)
        result.updated += 1


async def _prune_missing(
    channel: ResourceChannel[Any],
    *,
    patient_id: int,
    remote_fhir_ids: set[str],
    result: ResourceSyncResult,
) -> None:
    local_fhir_ids = await channel.list_fhir_ids(patient_id)
    for fhir_id in sorted(local_fhir_ids - remote_fhir_ids):
        action = resolve_sync_action(None, True)
        logger.debug("fhir_id=%s missing remotely action=%s", fhir_id, action.value)
        if action is SyncAction.DELETE:
            await channel.delete_by_fhir_id(patient_id=patient_id, fhir_id=fhir_id)
            result.deleted += 1


async def sync_resource_type(
    registration: ResourceRegistration,
    patient: SyncPatient,
    *,
    remote_id_overrides: Mapping[str, str] | None = None,
    prune_missing: bool = False,
) -> ResourceSyncResult:
    """Reconcile one resource type for ``patient``.

    Never raises for fetch or store failures: they end processing of this
    resource type and are reported through the returned result. Items
    already applied before the failure stay applied.
    """
    name = registration.name
    result = ResourceSyncResult(name=name)

    with sync_stage(name):
        try:
            remote_fhir_id = resolve_remote_patient_id(
                name, patient.fhir_id, remote_id_overrides
            )
            result.remote_fhir_id = remote_fhir_id

            items = await registration.fetch(remote_fhir_id, patient.id)
            if not items:
                logger.debug("No FHIR data returned for remote patient %s", remote_fhir_id)
                result.status = ResourceSyncStatus.SKIPPED
                return result

            result.fetched = len(items)
            seen_fhir_ids: set[str] = set()
            for item in items:
                fhir_id = item.get("fhir_id") if isinstance(item, Mapping) else None
                if not fhir_id:
                    logger.debug("Skipping item without fhir_id")
                    result.skipped_items += 1
                    continue
                seen_fhir_ids.add(fhir_id)
                await _apply_item(
                    registration.channel,
                    patient_id=patient.id,
                    fhir_id=fhir_id,
                    item=item,
                    result=result,
                )

            # A snapshot without a single usable id cannot tell us what was removed.
            if prune_missing and seen_fhir_ids:
                await _prune_missing(
                    registration.channel,
                    patient_id=patient.id,
                    remote_fhir_ids=seen_fhir_ids,
                    result=result,
                )
        except Exception as exc:
            result.status = ResourceSyncStatus.FAILED
            result.error = str(exc) or exc.__class__.__name__
            logger.warning("%s sync failed: %s", name, result.error)

    return result
