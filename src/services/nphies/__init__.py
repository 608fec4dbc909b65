"""
NPHIES Prior Authorization Messaging.

Source: NPHIES FHIR Implementation Guide (nphies-fs 1.0.0)
Verified: 2025-12-19

Provides NPHIES FHIR R4 integration:
- priorauth-request bundle composition (outbound)
- cancel-request bundle composition (outbound)
- priorauth-response validation and parsing (inbound)
"""

from src.services.nphies.fhir_base import (
    BundleEntry,
    NphiesError,
    CompositionError,
    IdentityAllocationError,
)
from src.services.nphies.vocabulary import (
    DocumentPlan,
    document_plan,
    resolve_authorization_type,
)
from src.services.nphies.identity import (
    IdentityCoordinator,
    IdentitySet,
    Role,
)
from src.services.nphies.claim_items import (
    BodySiteDetail,
    DentalDetail,
    PharmacyDetail,
    VisionDetail,
    SupportingInfoValue,
    ValueKind,
)
from src.services.nphies.bundle_assembler import (
    OutgoingMessage,
    compose_prior_auth_request,
)
from src.services.nphies.cancellation import compose_cancel_request
from src.services.nphies.response_parser import (
    PriorAuthResponseParser,
    ParsedResponse,
    ItemAdjudication,
    AdjudicationDetail,
    ResponseError,
    TransferInfo,
    Totals,
    parse_prior_auth_response,
)
from src.services.nphies.response_validator import (
    ValidationReport,
    validate_response,
)
from src.services.nphies.nphies_service import (
    NphiesService,
    NphiesSubmissionResult,
    NphiesResponseResult,
    NphiesMessageStatus,
    get_nphies_service,
)

__all__ = [
    # Base
    "BundleEntry",
    "NphiesError",
    "CompositionError",
    "IdentityAllocationError",
    # Vocabulary
    "DocumentPlan",
    "document_plan",
    "resolve_authorization_type",
    # Identity
    "IdentityCoordinator",
    "IdentitySet",
    "Role",
    # Items
    "BodySiteDetail",
    "DentalDetail",
    "PharmacyDetail",
    "VisionDetail",
    "SupportingInfoValue",
    "ValueKind",
    # Composition
    "OutgoingMessage",
    "compose_prior_auth_request",
    "compose_cancel_request",
    # Response Parser
    "PriorAuthResponseParser",
    "ParsedResponse",
    "ItemAdjudication",
    "AdjudicationDetail",
    "ResponseError",
    "TransferInfo",
    "Totals",
    "parse_prior_auth_response",
    # Response Validator
    "ValidationReport",
    "validate_response",
    # Service
    "NphiesService",
    "NphiesSubmissionResult",
    "NphiesResponseResult",
    "NphiesMessageStatus",
    "get_nphies_service",
]
