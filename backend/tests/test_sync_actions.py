import pytest

from healthsync.services.fhir_sync.actions import SyncAction, resolve_sync_action


@pytest.mark.parametrize(
    ("remote_item", "local_exists", "expected"),
    [
        (None, True, SyncAction.DELETE),
        ({"fhir_id": "A1"}, False, SyncAction.CREATE),
        ({"fhir_id": "A1"}, True, SyncAction.UPDATE),
        (None, False, SyncAction.SKIP),
    ],
)
def test_resolve_sync_action_truth_table(remote_item, local_exists, expected):
    assert resolve_sync_action(remote_item, local_exists) is expected


@pytest.mark.parametrize("empty_payload", [{}, [], ""])
def test_empty_remote_payload_counts_as_absent(empty_payload):
    assert resolve_sync_action(empty_payload, True) is SyncAction.DELETE
    assert resolve_sync_action(empty_payload, False) is SyncAction.SKIP


def test_sync_action_values_are_lowercase_labels():
    assert [action.value for action in SyncAction] == ["create", "update", "delete", "skip"]
