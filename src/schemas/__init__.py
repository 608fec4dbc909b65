"""
Pydantic Schemas for NPHIES Prior Authorization.

Input records validated before bundle composition.
"""

from src.schemas.prior_auth import (
    NphiesRecord,
    PatientRecord,
    ProviderRecord,
    InsurerRecord,
    PractitionerRecord,
    PolicyHolderRecord,
    CoverageRecord,
    DiagnosisEntry,
    SupportingInfoEntry,
    Attachment,
    LineItem,
    AuthorizationRequest,
)

__all__ = [
    "NphiesRecord",
    "PatientRecord",
    "ProviderRecord",
    "InsurerRecord",
    "PractitionerRecord",
    "PolicyHolderRecord",
    "CoverageRecord",
    "DiagnosisEntry",
    "SupportingInfoEntry",
    "Attachment",
    "LineItem",
    "AuthorizationRequest",
]
