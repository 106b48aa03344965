"""Sync action policy shared by the patient step and every resource pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


def resolve_sync_action(remote_item: Any | None, local_exists: bool) -> SyncAction:
    """Decide how to reconcile one remote item with the local store.

    ``None`` and empty payloads count as "absent on the remote side".
    """
    remote_present = bool(remote_item)
    if not remote_present and local_exists:
        return SyncAction.DELETE
    if remote_present and not local_exists:
        return SyncAction.CREATE
    if remote_present and local_exists:
        return SyncAction.UPDATE
    return SyncAction.SKIP
