"""
Pydantic Schemas for NPHIES Prior Authorization Input Records.
Source: NPHIES FHIR Implementation Guide (nphies-fs 1.0.0)
Verified: 2025-12-19

Records arrive from the persistence layer as plain rows; these models
validate them into typed input for the message engine. Unknown columns are
ignored.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NphiesRecord(BaseModel):
    """Base for all engine input records."""

    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


# =============================================================================
# Party Records
# =============================================================================


class PatientRecord(NphiesRecord):
    """Subject of the request."""

    patient_id: Optional[str] = Field(None, description="Record id, reused as Patient.id")
    name: str = Field(..., min_length=1, description="Full name")
    identifier: Optional[str] = Field(None, description="National ID / Iqama / passport / MRN")
    identifier_type: str = Field(default="national_id", description="national_id, iqama, passport, mrn")
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    marital_status: Optional[str] = None
    occupation: str = Field(default="business")


class ProviderRecord(NphiesRecord):
    """Requesting facility."""

    provider_id: Optional[str] = Field(None, description="Record id, reused as Organization.id")
    provider_name: str = Field(default="Provider Organization")
    nphies_id: Optional[str] = Field(None, description="NPHIES provider license")
    provider_type: str = Field(default="1", description="provider-type code or name")
    identifier_system: Optional[str] = Field(
        None, description="Base system for provider-issued identifiers"
    )
    address: Optional[str] = None
    city: Optional[str] = None


class InsurerRecord(NphiesRecord):
    """Payer receiving the request."""

    insurer_id: Optional[str] = Field(None, description="Record id, reused as Organization.id")
    insurer_name: str = Field(default="Insurance Organization")
    nphies_id: Optional[str] = Field(None, description="NPHIES payer license")


class PractitionerRecord(NphiesRecord):
    """Treating practitioner; a default descriptor is used when absent."""

    practitioner_id: Optional[str] = None
    name: str = Field(default="Default Practitioner")
    license_number: Optional[str] = None
    nphies_id: Optional[str] = None
    identifier_type: str = Field(default="MD")
    specialty_code: Optional[str] = Field(None, description="practice-codes value")


class PolicyHolderRecord(NphiesRecord):
    """Policy holder when it is not the subject."""

    policy_holder_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    identifier: Optional[str] = None
    identifier_type: str = Field(default="national_id")
    gender: Optional[str] = None
    birth_date: Optional[date] = None


class CoverageRecord(NphiesRecord):
    """Policy and member identifiers for the subject."""

    coverage_id: Optional[str] = None
    member_id: str = Field(..., min_length=1)
    coverage_type: str = Field(default="EHCPOL")
    relationship: str = Field(default="self")
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    network: Optional[str] = None
    network_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


# =============================================================================
# Request Sub-Records
# =============================================================================


class DiagnosisEntry(NphiesRecord):
    """Diagnosis referenced by items through its sequence."""

    sequence: Optional[int] = Field(None, ge=1)
    code: str = Field(..., min_length=1, description="ICD-10-AM code")
    display: Optional[str] = None
    diagnosis_type: str = Field(default="principal")
    on_admission: Optional[str] = Field(None, description="y / n / u")

    @field_validator("on_admission", mode="before")
    @classmethod
    def normalize_on_admission(cls, v):
        if isinstance(v, bool):
            return "y" if v else "n"
        return v


class SupportingInfoEntry(NphiesRecord):
    """
    Supporting evidence entry.

    Exactly one value field is emitted; the first populated one in the order
    string, quantity, boolean, date, period, reference wins.
    """

    sequence: Optional[int] = Field(None, ge=1)
    category: str = Field(..., min_length=1)
    code: Optional[str] = None
    code_display: Optional[str] = None
    code_text: Optional[str] = None
    code_system: Optional[str] = None
    timing_date: Optional[date] = None
    timing_period_start: Optional[datetime] = None
    timing_period_end: Optional[datetime] = None
    value_string: Optional[str] = None
    value_quantity: Optional[Decimal] = None
    value_quantity_unit: Optional[str] = None
    value_boolean: Optional[bool] = None
    value_date: Optional[date] = None
    value_period_start: Optional[datetime] = None
    value_period_end: Optional[datetime] = None
    value_reference: Optional[str] = None
    reason_code: Optional[str] = None


class Attachment(NphiesRecord):
    """Document carried as a Binary entry."""

    binary_id: Optional[str] = None
    content_type: str = Field(default="application/pdf")
    base64_content: str = Field(..., min_length=1)
    title: Optional[str] = None


class LineItem(NphiesRecord):
    """
    Requested service line.

    Type-specific columns (tooth, eye, medication) are read according to the
    request's authorization type; the others are ignored.
    """

    sequence: Optional[int] = Field(None, ge=1)
    product_or_service_code: Optional[str] = None
    product_or_service_display: Optional[str] = None
    product_or_service_system: Optional[str] = None
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    factor: Decimal = Field(default=Decimal("1"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    patient_share: Decimal = Field(default=Decimal("0"), ge=0)
    payer_share: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    serviced_date: Optional[date] = None
    is_package: bool = False
    is_maternity: bool = False
    diagnosis_sequences: Optional[list[int]] = None
    information_sequences: Optional[list[int]] = None

    # Professional
    body_site: Optional[str] = None

    # Dental
    tooth_number: Optional[str] = None
    tooth_surface: Optional[str] = Field(None, description="Comma-separated surfaces, e.g. 'M,O'")

    # Vision
    eye: Optional[str] = Field(None, description="right / left / RIV / LIV")

    # Pharmacy
    item_type: str = Field(default="medication", description="medication or device")
    medication_code: Optional[str] = None
    medication_name: Optional[str] = None
    prescribed_medication_code: Optional[str] = None
    pharmacist_selection_reason: Optional[str] = None
    pharmacist_substitute: Optional[str] = None
    days_supply: Optional[int] = Field(None, ge=1)


# =============================================================================
# Authorization Request
# =============================================================================


class AuthorizationRequest(NphiesRecord):
    """Prior authorization request as stored by the request forms."""

    id: Optional[str] = Field(None, description="Record id, reused as Claim.id")
    auth_type: Optional[str] = Field(
        None, description="institutional, professional, pharmacy, dental, vision"
    )
    encounter_class: Optional[str] = None
    priority: str = Field(default="normal")
    currency: Optional[str] = None
    request_date: Optional[datetime] = None
    request_number: Optional[str] = None
    nphies_request_id: Optional[str] = None
    pre_auth_ref: Optional[str] = None
    is_update: bool = False
    is_resubmission: bool = False
    related_claim_identifier: Optional[str] = None
    total_amount: Optional[Decimal] = None

    diagnoses: list[DiagnosisEntry] = Field(default_factory=list)
    items: list[LineItem] = Field(default_factory=list)
    supporting_info: list[SupportingInfoEntry] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)

    # Encounter
    encounter_id: Optional[str] = None
    encounter_identifier: Optional[str] = None
    encounter_status: Optional[str] = None
    encounter_start: Optional[datetime] = None
    encounter_end: Optional[datetime] = None
    service_type: Optional[str] = None
    admit_source: Optional[str] = None
    admission_specialty: Optional[str] = None
    triage_category: Optional[str] = None
    triage_date: Optional[datetime] = None
    encounter_priority: Optional[str] = None
    service_event_type: Optional[str] = None

    # Claim extensions and defaults
    practice_code: Optional[str] = None
    chief_complaint: Optional[str] = None
    estimated_length_of_stay: Optional[int] = Field(None, ge=1)
    eligibility_ref: Optional[str] = None
    eligibility_response_id: Optional[str] = None
    eligibility_response_system: Optional[str] = None
    eligibility_offline_ref: Optional[str] = None
    eligibility_offline_date: Optional[date] = None
    is_transfer: bool = False
    is_newborn: bool = False
    birth_weight: Optional[Decimal] = None
    days_supply: Optional[int] = Field(None, ge=1)
