"""API Routes for HealthSync."""

from healthsync.api import fhir_sync, health

__all__ = ["fhir_sync", "health"]
