import pytest
from pydantic import ValidationError

from healthsync import config


def _settings(**overrides):
    return config.Settings(database_url="sqlite+aiosqlite:///:memory:", **overrides)


def test_settings_defaults_and_cache():
    settings = config.get_settings()
    second = config.get_settings()

    assert settings is second
    assert settings.app_name == "HealthSync API"
    assert settings.api_prefix == "/api/v1"


def test_fhir_defaults():
    settings = _settings()

    assert settings.fhir_base_url == "https://hapi.fhir.org/baseR4"
    assert settings.fhir_timeout_seconds == 10.0
    assert settings.fhir_retry_attempts == 3
    assert settings.fhir_retry_delay_seconds == 1.0
    assert settings.fhir_sync_prune_missing is False


def test_fhir_base_url_is_normalised():
    assert _settings(fhir_base_url="  https://fhir.test/r4/ ").fhir_base_url == (
        "https://fhir.test/r4"
    )


def test_blank_fhir_base_url_is_rejected():
    with pytest.raises(ValidationError):
        _settings(fhir_base_url="  /")


def test_sandbox_overrides_disabled_by_default():
    assert _settings().fhir_remote_id_overrides == {}


def test_sandbox_overrides_when_enabled():
    overrides = _settings(fhir_sandbox_overrides_enabled=True).fhir_remote_id_overrides

    assert overrides["Patient Allergy"] == "7006415"
    assert overrides["Patient Surgery Procedure"] == "206686"
    assert len(overrides) == 7


def test_main_app_metadata():
    from healthsync.main import app

    assert app.title == config.settings.app_name
    assert app.version == config.settings.app_version
    assert app.docs_url == "/docs"
    paths = {route.path for route in app.routes}
    assert "/api/v1/patients/{patient_id}/fhir-sync" in paths
    assert "/api/v1/patients/{patient_id}/fhir-sync/run" in paths
    assert "/health" in paths
