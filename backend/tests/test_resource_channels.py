import pytest

from healthsync.models import PatientCondition, PatientMedication
from healthsync.services.fhir_sync.channels import (
    InMemoryPatientStore,
    InMemoryResourceChannel,
    SQLPatientStore,
    SQLResourceChannel,
    StoreError,
)


@pytest.mark.anyio
async def test_in_memory_channel_create_and_lookup():
    channel = InMemoryResourceChannel()

    created = await channel.create(
        {"patient_id": 5, "fhir_id": "A1", "condition_name": "Asthma"}
    )

    assert created["id"] == 1
    assert await channel.get_by_fhir_id(5, "A1") == created
    assert await channel.get_by_fhir_id(6, "A1") is None


@pytest.mark.anyio
async def test_in_memory_channel_rejects_duplicates_and_missing_keys():
    channel = InMemoryResourceChannel([{"patient_id": 5, "fhir_id": "A1"}])

    with pytest.raises(StoreError, match="duplicate"):
        await channel.create({"patient_id": 5, "fhir_id": "A1"})
    with pytest.raises(StoreError):
        await channel.create({"patient_id": 5})


@pytest.mark.anyio
async def test_in_memory_channel_update_keeps_identity_columns():
    channel = InMemoryResourceChannel(
        [{"patient_id": 5, "fhir_id": "A1", "condition_name": "Asthma"}]
    )

    await channel.update_by_fhir_id(
        {"patient_id": 99, "fhir_id": "B2", "id": 42, "condition_name": "Severe asthma"},
        patient_id=5,
        fhir_id="A1",
    )

    row = await channel.get_by_fhir_id(5, "A1")
    assert row["condition_name"] == "Severe asthma"
    assert row["patient_id"] == 5
    assert row["fhir_id"] == "A1"
    assert row["id"] == 1


@pytest.mark.anyio
async def test_in_memory_channel_delete_and_list_are_scoped_to_patient():
    channel = InMemoryResourceChannel(
        [
            {"patient_id": 5, "fhir_id": "A1"},
            {"patient_id": 5, "fhir_id": "A2"},
            {"patient_id": 6, "fhir_id": "A1"},
        ]
    )

    await channel.delete_by_fhir_id(patient_id=5, fhir_id="A1")
    await channel.delete_by_fhir_id(patient_id=5, fhir_id="missing")

    assert await channel.list_fhir_ids(5) == {"A2"}
    assert await channel.list_fhir_ids(6) == {"A1"}


@pytest.mark.anyio
async def test_in_memory_patient_store_update_and_delete():
    store = InMemoryPatientStore([{"id": 5, "fhir_id": "7341277", "first_name": "Ada"}])

    await store.update_by_fhir_id({"first_name": "Adaeze", "id": 9}, fhir_id="7341277")
    patient = await store.get_by_fhir_id("7341277")
    assert patient["first_name"] == "Adaeze"
    assert patient["id"] == 5

    await store.delete_by_fhir_id("7341277")
    assert await store.get_by_fhir_id("7341277") is None


@pytest.mark.anyio
async def test_sql_channel_round_trip(session_factory, make_patient):
    patient = await make_patient()
    channel = SQLResourceChannel(PatientCondition, session_factory)

    created = await channel.create(
        {
            "patient_id": patient.id,
            "fhir_id": "cond-1",
            "condition_name": "Hypertension",
            "unknown_field": "ignored",
        }
    )
    assert created.id is not None

    await channel.update_by_fhir_id(
        {"condition_name": "Essential hypertension", "fhir_id": "other"},
        patient_id=patient.id,
        fhir_id="cond-1",
    )
    updated = await channel.get_by_fhir_id(patient.id, "cond-1")
    assert updated.condition_name == "Essential hypertension"
    assert updated.fhir_id == "cond-1"

    assert await channel.list_fhir_ids(patient.id) == {"cond-1"}

    await channel.delete_by_fhir_id(patient_id=patient.id, fhir_id="cond-1")
    assert await channel.get_by_fhir_id(patient.id, "cond-1") is None


@pytest.mark.anyio
async def test_sql_channel_unique_constraint_raises_store_error(session_factory, make_patient):
    patient = await make_patient()
    channel = SQLResourceChannel(PatientMedication, session_factory)
    payload = {"patient_id": patient.id, "fhir_id": "med-1", "name": "Metformin"}

    await channel.create(payload)
    with pytest.raises(StoreError, match="patient_medications"):
        await channel.create(payload)


@pytest.mark.anyio
async def test_sql_channel_same_fhir_id_allowed_for_different_patients(
    session_factory, make_patient
):
    first = await make_patient(fhir_id="p-1")
    second = await make_patient(fhir_id="p-2")
    channel = SQLResourceChannel(PatientMedication, session_factory)

    await channel.create({"patient_id": first.id, "fhir_id": "med-1", "name": "Metformin"})
    await channel.create({"patient_id": second.id, "fhir_id": "med-1", "name": "Metformin"})

    assert await channel.list_fhir_ids(first.id) == {"med-1"}
    assert await channel.list_fhir_ids(second.id) == {"med-1"}


@pytest.mark.anyio
async def test_sql_patient_store_update_and_cascading_delete(session_factory, make_patient):
    patient = await make_patient()
    conditions = SQLResourceChannel(PatientCondition, session_factory)
    await conditions.create(
        {"patient_id": patient.id, "fhir_id": "cond-1", "condition_name": "Asthma"}
    )
    store = SQLPatientStore(session_factory)

    await store.update_by_fhir_id(
        {"first_name": "Adaeze", "gender": "female", "fhir_id": "changed"},
        fhir_id="7341277",
    )
    refreshed = await store.get_by_fhir_id("7341277")
    assert refreshed.first_name == "Adaeze"
    assert refreshed.gender == "female"

    await store.delete_by_fhir_id("7341277")
    assert await store.get_by_fhir_id("7341277") is None
    assert await conditions.list_fhir_ids(patient.id) == set()


@pytest.mark.anyio
async def test_in_memory_channel_delete_is_idempotent():
    channel = InMemoryResourceChannel([{"patient_id": 5, "fhir_id": "A1"}])

    await channel.delete_by_fhir_id(patient_id=5, fhir_id="A1")
    await channel.delete_by_fhir_id(patient_id=5, fhir_id="A1")

    assert await channel.list_fhir_ids(5) == set()


@pytest.mark.anyio
async def test_sql_channel_delete_is_idempotent(session_factory, make_patient):
    patient = await make_patient()
    channel = SQLResourceChannel(PatientCondition, session_factory)
    await channel.create(
        {"patient_id": patient.id, "fhir_id": "cond-1", "condition_name": "Asthma"}
    )
    await channel.create(
        {"patient_id": patient.id, "fhir_id": "cond-2", "condition_name": "Eczema"}
    )

    await channel.delete_by_fhir_id(patient_id=patient.id, fhir_id="cond-1")
    await channel.delete_by_fhir_id(patient_id=patient.id, fhir_id="cond-1")

    assert await channel.get_by_fhir_id(patient.id, "cond-1") is None
    assert await channel.list_fhir_ids(patient.id) == {"cond-2"}
