import logging

from healthsync.logging import ContextFilter, request_id_var, sync_stage, sync_stage_var


def _record():
    return logging.LogRecord("healthsync.fhir_sync", logging.INFO, __file__, 1, "msg", (), None)


def test_context_filter_defaults_to_dash():
    record = _record()

    assert ContextFilter().filter(record) is True
    assert record.request_id == "-"
    assert record.sync_stage == "-"


def test_context_filter_reads_context_vars():
    token = request_id_var.set("req-1")
    try:
        with sync_stage("Patient Allergy"):
            record = _record()
            ContextFilter().filter(record)
    finally:
        request_id_var.reset(token)

    assert record.request_id == "req-1"
    assert record.sync_stage == "Patient Allergy"


def test_sync_stage_nests_and_restores():
    with sync_stage("Patient"):
        with sync_stage("Patient Goal"):
            assert sync_stage_var.get() == "Patient Goal"
        assert sync_stage_var.get() == "Patient"
    assert sync_stage_var.get() is None
