from healthsync.models.base import Base, TimestampMixin
from healthsync.models.health_records import (
    DischargeInstruction,
    Hospitalization,
    PatientAllergy,
    PatientCondition,
    PatientGoal,
    PatientMedication,
    SurgeryProcedure,
)
from healthsync.models.patient import Patient

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Core Models
    "Patient",
    # Health Records
    "PatientCondition",
    "PatientAllergy",
    "PatientMedication",
    "Hospitalization",
    "SurgeryProcedure",
    "DischargeInstruction",
    "PatientGoal",
]
