"""Health record models reconciled from FHIR resources.

Every table carries the owning ``patient_id`` and the remote ``fhir_id``;
the pair is unique so concurrent syncs for one patient cannot insert the
same remote item twice.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from healthsync.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from healthsync.models.patient import Patient


class PatientCondition(Base, TimestampMixin):
    """Medical condition or problem-list entry (FHIR Condition)."""

    __tablename__ = "patient_conditions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fhir_id: Mapped[str] = mapped_column(String(64), nullable=False)

    condition_name: Mapped[str] = mapped_column(String(255), nullable=False)
    icd_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    clinical_status: Mapped[str | None] = mapped_column(
        String(30), nullable=True, comment="active, recurrence, remission, resolved"
    )
    verification_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    severity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    onset_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    abatement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recorded_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="conditions")

    __table_args__ = (
        UniqueConstraint("patient_id", "fhir_id", name="uq_patient_conditions_patient_fhir"),
    )


class PatientAllergy(Base, TimestampMixin):
    """Allergy or intolerance (FHIR AllergyIntolerance)."""

    __tablename__ = "patient_allergies"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fhir_id: Mapped[str] = mapped_column(String(64), nullable=False)

    allergen: Mapped[str] = mapped_column(String(255), nullable=False)
    allergen_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    allergy_type: Mapped[str | None] = mapped_column(
        String(50), nullable=True, comment="food, medication, environment, biologic"
    )
    criticality: Mapped[str | None] = mapped_column(String(20), nullable=True)
    severity: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reaction: Mapped[str | None] = mapped_column(Text, nullable=True)
    clinical_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    onset_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="allergies")

    __table_args__ = (
        UniqueConstraint("patient_id", "fhir_id", name="uq_patient_allergies_patient_fhir"),
    )


class PatientMedication(Base, TimestampMixin):
    """Prescribed medication (FHIR MedicationRequest)."""

    __tablename__ = "patient_medications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fhir_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    drug_code: Mapped[str | None] = mapped_column(
        String(50), nullable=True, comment="RxNorm, NDC, or other drug code"
    )
    dosage: Mapped[str | None] = mapped_column(String(200), nullable=True)
    dosage_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    dosage_unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    frequency: Mapped[str | None] = mapped_column(String(100), nullable=True)
    route: Mapped[str | None] = mapped_column(String(50), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    prescribed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[str | None] = mapped_column(
        String(50), nullable=True, comment="active, completed, discontinued, on-hold"
    )
    prescriber: Mapped[str | None] = mapped_column(String(200), nullable=True)
    indication: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="medications")

    __table_args__ = (
        UniqueConstraint("patient_id", "fhir_id", name="uq_patient_medications_patient_fhir"),
    )


class Hospitalization(Base, TimestampMixin):
    """Inpatient stay (FHIR Encounter with class IMP)."""

    __tablename__ = "hospitalizations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fhir_id: Mapped[str] = mapped_column(String(64), nullable=False)

    admission_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    discharge_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    facility: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    discharge_disposition: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attending_provider: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="hospitalizations")

    __table_args__ = (
        UniqueConstraint("patient_id", "fhir_id", name="uq_hospitalizations_patient_fhir"),
    )


class SurgeryProcedure(Base, TimestampMixin):
    """Surgery or other performed procedure (FHIR Procedure)."""

    __tablename__ = "surgery_procedures"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fhir_id: Mapped[str] = mapped_column(String(64), nullable=False)

    procedure_name: Mapped[str] = mapped_column(String(255), nullable=False)
    procedure_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    performed_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    performer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    body_site: Mapped[str | None] = mapped_column(String(200), nullable=True)
    outcome: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="surgery_procedures")

    __table_args__ = (
        UniqueConstraint("patient_id", "fhir_id", name="uq_surgery_procedures_patient_fhir"),
    )


class DischargeInstruction(Base, TimestampMixin):
    """Care plan handed to the patient at discharge (FHIR CarePlan)."""

    __tablename__ = "discharge_instructions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fhir_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    intent: Mapped[str | None] = mapped_column(String(30), nullable=True)
    activities: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Newline separated activity descriptions"
    )
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    author: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="discharge_instructions")

    __table_args__ = (
        UniqueConstraint(
            "patient_id", "fhir_id", name="uq_discharge_instructions_patient_fhir"
        ),
    )


class PatientGoal(Base, TimestampMixin):
    """High level health goal (FHIR Goal)."""

    __tablename__ = "patient_goals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fhir_id: Mapped[str] = mapped_column(String(64), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)
    lifecycle_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    achievement_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    priority: Mapped[str | None] = mapped_column(String(30), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    target_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    patient: Mapped["Patient"] = relationship(back_populates="goals")

    __table_args__ = (
        UniqueConstraint("patient_id", "fhir_id", name="uq_patient_goals_patient_fhir"),
    )
