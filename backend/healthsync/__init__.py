"""HealthSync: reconcile local patient health records with a FHIR server."""

__version__ = "0.1.0"
