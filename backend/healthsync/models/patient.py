from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from healthsync.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from healthsync.models.health_records import (
        DischargeInstruction,
        Hospitalization,
        PatientAllergy,
        PatientCondition,
        PatientGoal,
        PatientMedication,
        SurgeryProcedure,
    )


class Patient(Base, TimestampMixin):
    """Patient model storing core demographic and identification data."""

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    fhir_id: Mapped[str | None] = mapped_column(
        String(64),
        unique=True,
        index=True,
        nullable=True,
        comment="Logical id of the Patient resource on the FHIR server",
    )
    fhir_last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last time the background scheduler attempted a FHIR sync",
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_language: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_deceased: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    conditions: Mapped[list["PatientCondition"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )
    allergies: Mapped[list["PatientAllergy"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )
    medications: Mapped[list["PatientMedication"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )
    hospitalizations: Mapped[list["Hospitalization"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )
    surgery_procedures: Mapped[list["SurgeryProcedure"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )
    discharge_instructions: Mapped[list["DischargeInstruction"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )
    goals: Mapped[list["PatientGoal"]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Patient(id={self.id}, fhir_id='{self.fhir_id}')>"
