"""
prescription.py (schemas)

Pydantic models for the structured prescription record.

These schemas define:
- The canonical StructuredPrescription returned to callers
- The warning objects attached to it
- Error and verification payloads of the prescription API

JSON keys are camelCase (patientInfo, dateOfBirth, ...) because that is
what the pharmacy front-end consumes. Python attributes stay snake_case.

Records are frozen: once assembled they are never mutated, a new
record is built instead.
"""

from datetime import datetime
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


WarningType = Literal["interaction", "unclear", "error"]
Severity = Literal["low", "medium", "high"]


class _Record(BaseModel):
    """Shared config: frozen, camelCase aliases, extra keys ignored."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_empty(cls, value, info):
        # Models write null for fields they could not read.
        # Leaf fields are free text, so null means "".
        if value is None and info.field_name not in ("warnings",):
            return ""
        return value


class PatientInfo(_Record):
    name: str = Field(..., description="Patient full name")
    date_of_birth: str = Field(..., alias="dateOfBirth", description="Date of birth as written")
    id: str = Field(..., description="Patient identifier as written")


class Medication(_Record):
    name: str = Field(..., examples=["Amoxicillin 500mg"])
    dosage: str = Field(..., examples=["1 capsule"])
    frequency: str = Field(..., examples=["three times daily"])
    instructions: str = Field(..., examples=["Take with food. Finish all medication."])


class Prescriber(_Record):
    name: str = Field(..., examples=["Dr. Sarah Johnson, MD"])
    npi: str = Field(..., description="National Provider Identifier")
    date: str = Field(..., description="Prescription date as written")


class PrescriptionWarning(_Record):
    type: WarningType
    message: str
    severity: Severity

    @field_validator("type", "severity", mode="before")
    @classmethod
    def _lowercase(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class StructuredPrescription(_Record):
    """
    The canonical output of the pipeline.

    patientInfo, medication and prescriber are required.
    A model response missing one of them is rejected as a parse failure.
    """

    patient_info: PatientInfo = Field(..., alias="patientInfo")
    medication: Medication
    prescriber: Prescriber
    warnings: Tuple[PrescriptionWarning, ...] = Field(default=())

    @field_validator("warnings", mode="before")
    @classmethod
    def _null_warnings(cls, value):
        return () if value is None else value


class ErrorResponse(BaseModel):
    """Body returned for every failed request."""

    error: str
    details: Optional[str] = None


class VerificationRequest(BaseModel):
    """
    Pharmacist decision on an extracted prescription.

    Used by:
    - POST /prescriptions/verify
    """

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["approved", "rejected"]
    prescription_data: StructuredPrescription = Field(..., alias="prescriptionData")
    notes: Optional[str] = None


class VerificationRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["approved", "rejected"]
    prescription_data: StructuredPrescription = Field(..., alias="prescriptionData")
    notes: Optional[str] = None
    verified_at: datetime = Field(..., alias="verifiedAt")
    verified_by: str = Field(..., alias="verifiedBy")


class VerificationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    verification_record: VerificationRecord = Field(..., alias="verificationRecord")
