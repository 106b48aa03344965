import pytest
import requests

import healthsync.services.fhir.client as client_module
from healthsync.services.fhir.client import FhirClient, FhirClientConfig, FhirRequestError


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeGet:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(**overrides):
    values = {
        "base_url": "https://fhir.test/baseR4",
        "timeout_seconds": 5.0,
        "retry_attempts": 3,
        "retry_delay_seconds": 0.0,
        "bearer_token": None,
        "verify_ssl": True,
        "page_size": 50,
        "max_pages": 5,
    }
    values.update(overrides)
    return FhirClient(FhirClientConfig(**values))


def _bundle(resources, next_url=None):
    bundle = {
        "resourceType": "Bundle",
        "entry": [{"resource": resource} for resource in resources],
    }
    if next_url:
        bundle["link"] = [{"relation": "next", "url": next_url}]
    return bundle


@pytest.fixture()
def fake_get(monkeypatch):
    def _install(*responses):
        fake = _FakeGet(responses)
        monkeypatch.setattr(client_module.requests, "get", fake)
        return fake

    return _install


@pytest.mark.anyio
async def test_get_patient_maps_resource(fake_get):
    fake = fake_get(
        _FakeResponse(payload={"resourceType": "Patient", "id": "7341277", "gender": "male"})
    )

    patient = await _client(bearer_token="secret").get_patient("7341277")

    assert patient == {"fhir_id": "7341277", "gender": "male"}
    url, kwargs = fake.calls[0]
    assert url == "https://fhir.test/baseR4/Patient/7341277"
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["timeout"] == 5.0


@pytest.mark.anyio
@pytest.mark.parametrize("status_code", [404, 410])
async def test_get_patient_absent_returns_none(fake_get, status_code):
    fake = fake_get(_FakeResponse(status_code=status_code, text="gone"))

    assert await _client().get_patient("missing") is None
    assert len(fake.calls) == 1


@pytest.mark.anyio
async def test_server_errors_are_retried_then_succeed(fake_get):
    fake = fake_get(
        _FakeResponse(status_code=503, text="busy"),
        requests.ConnectionError("reset"),
        _FakeResponse(payload={"resourceType": "Patient", "id": "p1"}),
    )

    patient = await _client().get_patient("p1")

    assert patient == {"fhir_id": "p1"}
    assert len(fake.calls) == 3


@pytest.mark.anyio
async def test_retries_exhausted_raises_with_status(fake_get):
    fake = fake_get(*[_FakeResponse(status_code=500, text="boom")] * 2)

    with pytest.raises(FhirRequestError) as excinfo:
        await _client(retry_attempts=2).get_patient("p1")

    assert excinfo.value.status_code == 500
    assert len(fake.calls) == 2


@pytest.mark.anyio
async def test_client_errors_are_not_retried(fake_get):
    fake = fake_get(_FakeResponse(status_code=401, text="unauthorized"))

    with pytest.raises(FhirRequestError, match="HTTP 401"):
        await _client().get_patient("p1")
    assert len(fake.calls) == 1


@pytest.mark.anyio
async def test_invalid_json_raises(fake_get):
    fake_get(_FakeResponse(payload=ValueError("bad json")))

    with pytest.raises(FhirRequestError, match="not valid JSON"):
        await _client(retry_attempts=1).get_patient("p1")


@pytest.mark.anyio
async def test_search_follows_next_links(fake_get):
    fake = fake_get(
        _FakeResponse(
            payload=_bundle(
                [{"resourceType": "Condition", "id": "c1", "code": {"text": "Asthma"}}],
                next_url="https://fhir.test/baseR4?_getpages=abc",
            )
        ),
        _FakeResponse(
            payload=_bundle(
                [
                    {"resourceType": "Condition", "id": "c2", "code": {"text": "Eczema"}},
                    {"resourceType": "OperationOutcome", "id": "oo"},
                ]
            )
        ),
    )

    conditions = await _client().get_patient_conditions("7341277", 5)

    assert [item["fhir_id"] for item in conditions] == ["c1", "c2"]
    assert all(item["patient_id"] == 5 for item in conditions)
    first_url, first_kwargs = fake.calls[0]
    assert first_url == "https://fhir.test/baseR4/Condition"
    assert first_kwargs["params"] == {"_count": "50", "patient": "7341277"}
    second_url, second_kwargs = fake.calls[1]
    assert second_url == "https://fhir.test/baseR4?_getpages=abc"
    assert second_kwargs["params"] is None


@pytest.mark.anyio
async def test_search_stops_at_page_limit(fake_get):
    page = _FakeResponse(
        payload=_bundle(
            [{"resourceType": "Goal", "id": "g1"}],
            next_url="https://fhir.test/baseR4?_getpages=more",
        )
    )
    fake = fake_get(page, page)

    goals = await _client(max_pages=2).get_patient_high_level_goals("7341277", 5)

    assert len(fake.calls) == 2
    assert len(goals) == 2


@pytest.mark.anyio
async def test_empty_search_returns_none(fake_get):
    fake_get(_FakeResponse(payload=_bundle([])))

    assert await _client().get_patient_allergies("7341277", 5) is None


@pytest.mark.anyio
async def test_hospitalizations_search_inpatient_encounters(fake_get):
    fake = fake_get(
        _FakeResponse(payload=_bundle([{"resourceType": "Encounter", "id": "e1"}]))
    )

    stays = await _client().get_patient_hospitalizations("53373", 5)

    assert stays[0]["fhir_id"] == "e1"
    url, kwargs = fake.calls[0]
    assert url.endswith("/Encounter")
    assert kwargs["params"]["class"] == "IMP"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("method", "resource_type"),
    [
        ("get_patient_medications", "MedicationRequest"),
        ("get_patient_surgery_procedures", "Procedure"),
        ("get_patient_discharge_instructions", "CarePlan"),
    ],
)
async def test_resource_fetch_queries_expected_type(fake_get, method, resource_type):
    fake = fake_get(_FakeResponse(payload=_bundle([])))

    await getattr(_client(), method)("7341277", 5)

    assert fake.calls[0][0] == f"https://fhir.test/baseR4/{resource_type}"


def test_config_from_settings_reads_fhir_fields():
    from healthsync.config import Settings

    source = Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        fhir_base_url="https://example.org/fhir/",
        fhir_retry_attempts=4,
    )

    config = FhirClientConfig.from_settings(source)

    assert config.base_url == "https://example.org/fhir"
    assert config.retry_attempts == 4
    assert config.timeout_seconds == 10.0
