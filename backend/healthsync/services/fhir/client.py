"""Read-only FHIR R4 REST client.

Each ``get_*`` fetch returns mapped local payloads, or ``None`` when the
server has nothing for the patient. Transport failures raise
``FhirRequestError`` once retries are exhausted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import requests

from healthsync.config import Settings, settings
from healthsync.services.fhir import mappers

logger = logging.getLogger(__name__)

# Status codes that mean "the resource is not there", not "the call failed".
ABSENT_STATUS_CODES = frozenset({404, 410})


class FhirRequestError(RuntimeError):
    """Raised when a FHIR request fails or returns an unusable payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


@dataclass(frozen=True)
class FhirClientConfig:
    """Resolved runtime configuration for the FHIR endpoint."""

    base_url: str
    timeout_seconds: float
    retry_attempts: int
    retry_delay_seconds: float
    bearer_token: str | None
    verify_ssl: bool
    page_size: int
    max_pages: int

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "FhirClientConfig":
        source = source or settings
        return cls(
            base_url=source.fhir_base_url,
            timeout_seconds=source.fhir_timeout_seconds,
            retry_attempts=source.fhir_retry_attempts,
            retry_delay_seconds=source.fhir_retry_delay_seconds,
            bearer_token=source.fhir_bearer_token,
            verify_ssl=source.fhir_verify_ssl,
            page_size=source.fhir_page_size,
            max_pages=source.fhir_max_pages_per_resource,
        )


def _build_request_headers(config: FhirClientConfig) -> dict[str, str]:
    headers = {"Accept": "application/fhir+json, application/json"}
    if config.bearer_token:
        headers["Authorization"] = f"Bearer {config.bearer_token}"
    return headers


def _extract_fhir_bundle_resources(bundle: dict[str, Any]) -> list[dict[str, Any]]:
    entries = bundle.get("entry")
    if not isinstance(entries, list):
        return []
    resources: list[dict[str, Any]] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        resource = entry.get("resource")
        if isinstance(resource, dict):
            resources.append(resource)
    return resources


def _extract_bundle_next_url(bundle: dict[str, Any]) -> str | None:
    links = bundle.get("link")
    if not isinstance(links, list):
        return None
    for link in links:
        if not isinstance(link, dict):
            continue
        url = link.get("url")
        if link.get("relation") == "next" and isinstance(url, str) and url.strip():
            return url.strip()
    return None


class FhirClient:
    """Async facade over the FHIR REST API using ``requests`` in worker threads."""

    def __init__(self, config: FhirClientConfig) -> None:
        self.config = config

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "FhirClient":
        return cls(FhirClientConfig.from_settings(source))

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}/{path.lstrip('/')}"

    def _request_once(self, url: str, params: dict[str, str] | None) -> dict[str, Any] | None:
        try:
            response = requests.get(
                url,
                headers=_build_request_headers(self.config),
                params=params,
                timeout=self.config.timeout_seconds,
                verify=self.config.verify_ssl,
            )
        except requests.RequestException as exc:
            raise FhirRequestError(f"FHIR request failed for {url}: {exc}") from exc

        if response.status_code in ABSENT_STATUS_CODES:
            return None
        if response.status_code >= 400:
            snippet = response.text.strip().replace("\n", " ")[:240]
            raise FhirRequestError(
                f"FHIR request returned HTTP {response.status_code} for {url}: {snippet}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise FhirRequestError(
                f"FHIR response for {url} is not valid JSON",
                status_code=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise FhirRequestError(
                f"FHIR response for {url} is not a JSON object",
                status_code=response.status_code,
            )
        return payload

    async def _get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any] | None:
        """GET ``url`` and decode the JSON object, ``None`` when absent."""
        attempts = max(1, self.config.retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(self._request_once, url, params)
            except FhirRequestError as exc:
                retryable = exc.status_code is None or _is_retryable_status(exc.status_code)
                if not retryable or attempt >= attempts:
                    raise
                delay_seconds = self.config.retry_delay_seconds * attempt
                logger.warning(
                    "FHIR request attempt %d/%d failed (%s). Retrying in %.1fs.",
                    attempt,
                    attempts,
                    exc,
                    delay_seconds,
                )
                await asyncio.sleep(delay_seconds)
        return None

    async def search(self, resource_type: str, params: dict[str, str]) -> list[dict[str, Any]]:
        """Run a search and collect resources across ``next`` pages."""
        resources: list[dict[str, Any]] = []
        next_url: str | None = self._url(resource_type)
        request_params: dict[str, str] | None = {
            "_count": str(self.config.page_size),
            **params,
        }
        page_count = 0
        while next_url and page_count < self.config.max_pages:
            bundle = await self._get_json(next_url, request_params)
            if bundle is None:
                break
            resources.extend(_extract_fhir_bundle_resources(bundle))
            next_url = _extract_bundle_next_url(bundle)
            # next links already carry the query string
            request_params = None
            page_count += 1

        if next_url:
            logger.info(
                "FHIR %s search stopped after %d pages; remaining pages ignored",
                resource_type,
                page_count,
            )
        return resources

    async def _search_mapped(
        self,
        resource_type: str,
        fhir_id: str,
        patient_id: int,
        mapper: Callable[[dict[str, Any], int], dict[str, Any]],
        extra_params: dict[str, str] | None = None,
    ) -> list[dict[str, Any]] | None:
        resources = await self.search(
            resource_type, {"patient": fhir_id, **(extra_params or {})}
        )
        matching = [
            resource
            for resource in resources
            if resource.get("resourceType") in (None, resource_type)
        ]
        if not matching:
            return None
        return [mapper(resource, patient_id) for resource in matching]

    async def get_patient(self, fhir_id: str) -> dict[str, Any] | None:
        resource = await self._get_json(self._url(f"Patient/{fhir_id}"))
        if not resource:
            return None
        return mappers.map_patient(resource)

    async def get_patient_conditions(
        self, fhir_id: str, patient_id: int
    ) -> list[dict[str, Any]] | None:
        return await self._search_mapped(
            "Condition", fhir_id, patient_id, mappers.map_condition
        )

    async def get_patient_allergies(
        self, fhir_id: str, patient_id: int
    ) -> list[dict[str, Any]] | None:
        return await self._search_mapped(
            "AllergyIntolerance", fhir_id, patient_id, mappers.map_allergy
        )

    async def get_patient_medications(
        self, fhir_id: str, patient_id: int
    ) -> list[dict[str, Any]] | None:
        return await self._search_mapped(
            "MedicationRequest", fhir_id, patient_id, mappers.map_medication_request
        )

    async def get_patient_hospitalizations(
        self, fhir_id: str, patient_id: int
    ) -> list[dict[str, Any]] | None:
        return await self._search_mapped(
            "Encounter",
            fhir_id,
            patient_id,
            mappers.map_hospitalization,
            extra_params={"class": "IMP"},
        )

    async def get_patient_surgery_procedures(
        self, fhir_id: str, patient_id: int
    ) -> list[dict[str, Any]] | None:
        return await self._search_mapped(
            "Procedure", fhir_id, patient_id, mappers.map_procedure
        )

    async def get_patient_discharge_instructions(
        self, fhir_id: str, patient_id: int
    ) -> list[dict[str, Any]] | None:
        return await self._search_mapped(
            "CarePlan", fhir_id, patient_id, mappers.map_care_plan
        )

    async def get_patient_high_level_goals(
        self, fhir_id: str, patient_id: int
    ) -> list[dict[str, Any]] | None:
        return await self._search_mapped(
            "Goal", fhir_id, patient_id, mappers.map_goal
        )
