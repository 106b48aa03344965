"""FHIR REST client and resource mappers."""

from healthsync.services.fhir.client import FhirClient, FhirClientConfig, FhirRequestError

__all__ = ["FhirClient", "FhirClientConfig", "FhirRequestError"]
