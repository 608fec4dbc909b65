"""
NPHIES Service - Orchestrates prior authorization messaging.

Source: NPHIES FHIR Implementation Guide, prior authorization and cancel use cases
Verified: 2025-12-19

Provides high-level NPHIES operations:
- Compose priorauth-request bundles from stored records
- Compose cancel-request bundles
- Validate and parse priorauth-response bundles
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from src.core.config import NphiesSettings, get_settings
from src.schemas.prior_auth import (
    AuthorizationRequest,
    CoverageRecord,
    InsurerRecord,
    PatientRecord,
    PolicyHolderRecord,
    PractitionerRecord,
    ProviderRecord,
)
from src.services.nphies.bundle_assembler import OutgoingMessage, compose_prior_auth_request
from src.services.nphies.cancellation import compose_cancel_request
from src.services.nphies.fhir_base import NphiesError
from src.services.nphies.response_parser import ParsedResponse, parse_prior_auth_response
from src.services.nphies.response_validator import validate_response
from src.utils.logging import get_logger

logger = get_logger(__name__)

RecordInput = Union[Mapping[str, Any], Any, None]


# =============================================================================
# Enums and Models
# =============================================================================


class NphiesMessageStatus(str, Enum):
    """Processing status of one NPHIES message."""

    COMPOSED = "composed"  # Outgoing bundle ready to send
    PARSED = "parsed"  # Response parsed
    INVALID = "invalid"  # Response failed structural validation
    FAILED = "failed"  # Composition failed


@dataclass
class NphiesSubmissionResult:
    """Result of composing an outgoing message."""

    request_number: Optional[str]
    event: str
    status: NphiesMessageStatus
    bundle: Dict[str, Any] = None
    bundle_id: Optional[str] = None
    errors: List[str] = None
    created_at: datetime = None

    def __post_init__(self):
        if self.bundle is None:
            self.bundle = {}
        if self.errors is None:
            self.errors = []
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    @property
    def ok(self) -> bool:
        return self.status == NphiesMessageStatus.COMPOSED


@dataclass
class NphiesResponseResult:
    """Result of validating and parsing a response."""

    status: NphiesMessageStatus
    parsed: Optional[ParsedResponse] = None
    validation_errors: List[str] = None
    processing_time_ms: int = 0

    def __post_init__(self):
        if self.validation_errors is None:
            self.validation_errors = []

    @property
    def approved(self) -> bool:
        return self.parsed is not None and self.parsed.success


# =============================================================================
# Service
# =============================================================================


def _record(model, value: RecordInput):
    """Validate a plain mapping (or ORM row) into an input record."""
    if value is None or isinstance(value, model):
        return value
    if isinstance(value, Mapping):
        return model.model_validate(dict(value))
    return model.model_validate(value, from_attributes=True)


class NphiesService:
    """
    NPHIES prior authorization messaging service.

    Handles:
    - Input record validation
    - Request and cancel composition
    - Response validation and parsing

    Usage:
        service = NphiesService()
        result = service.compose_request(request, patient, provider, insurer, coverage)
        send(result.bundle)

        response = service.process_response(reply_bundle)
        if response.approved:
            print(response.parsed.pre_auth_ref)
    """

    def __init__(self, settings: Optional[NphiesSettings] = None):
        self.settings = settings or get_settings()

    def compose_request(
        self,
        request: RecordInput,
        patient: RecordInput,
        provider: RecordInput,
        insurer: RecordInput,
        coverage: RecordInput,
        practitioner: RecordInput = None,
        policy_holder: RecordInput = None,
    ) -> NphiesSubmissionResult:
        """
        Compose a priorauth-request bundle.

        Args:
            request: Authorization request (record or mapping)
            patient: Patient record
            provider: Provider record
            insurer: Insurer record
            coverage: Coverage record
            practitioner: Optional practitioner record
            policy_holder: Optional distinct policy holder record

        Returns:
            NphiesSubmissionResult; FAILED with errors when records are invalid
        """
        request_number = None
        try:
            auth_request = _record(AuthorizationRequest, request)
            request_number = auth_request.request_number if auth_request else None
            if auth_request is None:
                raise NphiesError("Authorization request is required", resource_type="Claim")

            message = compose_prior_auth_request(
                auth_request,
                _record(PatientRecord, patient),
                _record(ProviderRecord, provider),
                _record(InsurerRecord, insurer),
                _record(CoverageRecord, coverage),
                practitioner=_record(PractitionerRecord, practitioner),
                policy_holder=_record(PolicyHolderRecord, policy_holder),
                settings=self.settings,
            )
            return self._submission(request_number, message)

        except (NphiesError, ValidationError) as e:
            logger.error(f"Prior auth composition failed for {request_number}: {e}")
            return NphiesSubmissionResult(
                request_number=request_number,
                event="priorauth-request",
                status=NphiesMessageStatus.FAILED,
                errors=[str(e)],
            )

    def compose_cancel(
        self,
        request: RecordInput,
        provider: RecordInput,
        insurer: RecordInput,
        reason: Optional[str] = None,
    ) -> NphiesSubmissionResult:
        """Compose a cancel-request bundle for a previously sent request."""
        request_number = None
        try:
            auth_request = _record(AuthorizationRequest, request)
            request_number = auth_request.request_number if auth_request else None
            if auth_request is None:
                raise NphiesError("Authorization request is required", resource_type="Task")

            message = compose_cancel_request(
                auth_request,
                _record(ProviderRecord, provider) or ProviderRecord(),
                _record(InsurerRecord, insurer) or InsurerRecord(),
                reason=reason,
                settings=self.settings,
            )
            return self._submission(request_number, message)

        except (NphiesError, ValidationError) as e:
            logger.error(f"Cancel composition failed for {request_number}: {e}")
            return NphiesSubmissionResult(
                request_number=request_number,
                event="cancel-request",
                status=NphiesMessageStatus.FAILED,
                errors=[str(e)],
            )

    def process_response(self, bundle: Any) -> NphiesResponseResult:
        """
        Validate then parse a priorauth-response bundle.

        Structural violations are reported but parsing still runs, so an
        OperationOutcome-only reply keeps its NPHIES error details.
        """
        start_time = datetime.now(timezone.utc)
        report = validate_response(bundle)
        if not report.valid:
            logger.warning(f"Response failed structural validation: {report.errors}")

        parsed = parse_prior_auth_response(bundle)
        processing_time = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)

        logger.info(
            f"Parsed prior auth response: outcome={parsed.outcome}, "
            f"adjudication={parsed.adjudication_outcome}, success={parsed.success}, "
            f"pre_auth_ref={parsed.pre_auth_ref}"
        )

        return NphiesResponseResult(
            status=NphiesMessageStatus.PARSED if report.valid else NphiesMessageStatus.INVALID,
            parsed=parsed,
            validation_errors=report.errors,
            processing_time_ms=processing_time,
        )

    def _submission(self, request_number: Optional[str], message: OutgoingMessage) -> NphiesSubmissionResult:
        logger.info(
            f"Composed {message.event} bundle {message.bundle_id} "
            f"for {request_number} ({len(message.entries)} entries)"
        )
        return NphiesSubmissionResult(
            request_number=request_number,
            event=message.event,
            status=NphiesMessageStatus.COMPOSED,
            bundle=message.to_bundle(),
            bundle_id=message.bundle_id,
        )


# =============================================================================
# Factory Function
# =============================================================================


_nphies_service: Optional[NphiesService] = None


def get_nphies_service(settings: Optional[NphiesSettings] = None) -> NphiesService:
    """
    Get or create NPHIES service instance.

    Args:
        settings: Integration settings (global settings when omitted)

    Returns:
        NphiesService instance
    """
    global _nphies_service

    if _nphies_service is None:
        _nphies_service = NphiesService(settings=settings)

    return _nphies_service
