"""
Core Enumerations for NPHIES Prior Authorization.
Source: NPHIES FHIR Implementation Guide (nphies-fs 1.0.0)
Verified: 2025-12-18
"""

from enum import Enum


# =============================================================================
# Request Classification Enums
# =============================================================================


class AuthorizationType(str, Enum):
    """Prior authorization request types accepted by NPHIES."""

    INSTITUTIONAL = "institutional"  # Inpatient / daycase facilities
    PROFESSIONAL = "professional"  # Outpatient clinics
    PHARMACY = "pharmacy"  # Dispensed medications and devices
    DENTAL = "dental"  # Oral health ("oral" on the wire)
    VISION = "vision"  # Optical


# =============================================================================
# Response Enums
# =============================================================================


class ClaimResponseOutcome(str, Enum):
    """ClaimResponse.outcome values."""

    QUEUED = "queued"
    COMPLETE = "complete"
    PARTIAL = "partial"
    ERROR = "error"


class AdjudicationOutcome(str, Enum):
    """NPHIES adjudication-outcome extension codes."""

    APPROVED = "approved"
    PARTIAL = "partial"
    REJECTED = "rejected"
    PENDED = "pended"


class ItemDetailKind(str, Enum):
    """Type-specific payload carried on a claim line item."""

    DENTAL = "dental"  # Tooth number + surfaces
    VISION = "vision"  # Eye side
    PHARMACY = "pharmacy"  # Medication / device coding
    BODY_SITE = "body_site"  # Professional body site
