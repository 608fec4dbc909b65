"""
NPHIES Prior Authorization Message Assembly.

Source: NPHIES FHIR Implementation Guide, Bundle (message) profile
Verified: 2025-12-19

Assembles a ``priorauth-request`` message bundle:
1. Resolve the authorization type and its document plan
2. Allocate every identity once (IdentityCoordinator)
3. Run each builder against the shared IdentitySet
4. Order entries: header, claim, encounter, coverage, practitioner,
   provider, insurer, patient, [policy holder], binaries
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

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
from src.services.nphies import vocabulary
from src.services.nphies.fhir_base import (
    BUNDLE_PROFILE,
    BundleEntry,
    CompositionError,
    EVENT_PRIORAUTH_REQUEST,
    format_fhir_instant,
    meta_profile,
)
from src.services.nphies.identity import NEW_IDENTITY, IdentityCoordinator, IdentitySet, Role
from src.services.nphies.resource_builders import (
    build_binary,
    build_claim,
    build_coverage,
    build_encounter,
    build_insurer_organization,
    build_message_header,
    build_patient,
    build_policy_holder,
    build_practitioner,
    build_provider_organization,
)

logger = logging.getLogger(__name__)


@dataclass
class OutgoingMessage:
    """A composed message bundle before serialization."""

    bundle_id: str
    timestamp: str
    event: str
    entries: List[BundleEntry] = field(default_factory=list)
    profile: str = BUNDLE_PROFILE
    identities: Optional[IdentitySet] = None

    def resource(self, resource_type: str) -> Optional[Dict[str, Any]]:
        """First resource of the given type, if any."""
        for entry in self.entries:
            if entry.resource_type == resource_type:
                return entry.resource
        return None

    def to_bundle(self) -> Dict[str, Any]:
        return {
            "resourceType": "Bundle",
            "id": self.bundle_id,
            "meta": meta_profile(self.profile),
            "type": "message",
            "timestamp": self.timestamp,
            "entry": [entry.to_dict() for entry in self.entries],
        }


def message_bundle(event: str, entries: List[BundleEntry]) -> OutgoingMessage:
    """Wrap entries in a fresh message envelope."""
    return OutgoingMessage(
        bundle_id=str(uuid4()),
        timestamp=format_fhir_instant(),
        event=event,
        entries=entries,
    )


def _require(value: Any, what: str, request: AuthorizationRequest) -> None:
    if value is None:
        raise CompositionError(
            f"Missing {what} record for prior authorization request",
            resource_type="Bundle",
            field_name=what,
            request_number=request.request_number,
        )


def _policy_holder_id(holder: Optional[PolicyHolderRecord]) -> Optional[str]:
    """A holder record without an id is still a distinct person."""
    if holder is None:
        return None
    return holder.policy_holder_id or NEW_IDENTITY


def message_roles(plan: vocabulary.DocumentPlan) -> List[Role]:
    """Roles present in a prior-auth message for a document plan."""
    roles = [Role.MESSAGE_HEADER, Role.CLAIM]
    if plan.has_encounter:
        roles.append(Role.ENCOUNTER)
    roles.append(Role.COVERAGE)
    if plan.has_care_team:
        roles.append(Role.PRACTITIONER)
    roles.extend([Role.FACILITY, Role.PAYER, Role.SUBJECT, Role.POLICY_HOLDER])
    return roles


def compose_prior_auth_request(
    request: AuthorizationRequest,
    patient: Optional[PatientRecord],
    provider: Optional[ProviderRecord],
    insurer: Optional[InsurerRecord],
    coverage: Optional[CoverageRecord],
    practitioner: Optional[PractitionerRecord] = None,
    policy_holder: Optional[PolicyHolderRecord] = None,
    settings: Optional[NphiesSettings] = None,
) -> OutgoingMessage:
    """
    Compose a complete prior authorization request message.

    Args:
        request: Authorization request record with items and diagnoses
        patient: Subject of the request
        provider: Requesting facility
        insurer: Receiving payer
        coverage: Coverage the request is made against
        practitioner: Treating practitioner (default descriptor when omitted)
        policy_holder: Policy holder when distinct from the patient
        settings: Integration settings (global settings when omitted)

    Returns:
        OutgoingMessage with entries in NPHIES order

    Raises:
        CompositionError: If auth_type or a required party record is missing
    """
    settings = settings or get_settings()

    if not request.auth_type:
        raise CompositionError(
            "Authorization type is required",
            resource_type="Claim",
            field_name="auth_type",
            request_number=request.request_number,
        )
    _require(patient, "patient", request)
    _require(provider, "provider", request)
    _require(insurer, "insurer", request)
    _require(coverage, "coverage", request)

    auth_type = vocabulary.resolve_authorization_type(request.auth_type)
    plan = vocabulary.document_plan(auth_type.value)

    preferred = {
        Role.CLAIM: request.id,
        Role.ENCOUNTER: request.encounter_id,
        Role.SUBJECT: patient.patient_id,
        Role.FACILITY: provider.provider_id,
        Role.PAYER: insurer.insurer_id,
        Role.COVERAGE: coverage.coverage_id,
        Role.PRACTITIONER: practitioner.practitioner_id if practitioner else None,
        Role.POLICY_HOLDER: _policy_holder_id(policy_holder),
    }
    coordinator = IdentityCoordinator(base_url=settings.FULL_URL_BASE)
    ids = coordinator.allocate(
        message_roles(plan),
        preferred=preferred,
        attachment_ids=[attachment.binary_id for attachment in request.attachments],
    )

    claim = build_claim(request, auth_type, ids, provider, practitioner, settings)
    entries = [build_message_header(ids, provider, insurer, EVENT_PRIORAUTH_REQUEST, settings), claim]
    if plan.has_encounter:
        entries.append(build_encounter(request, auth_type, ids, settings))
    entries.append(build_coverage(coverage, ids))
    if plan.has_care_team:
        entries.append(build_practitioner(practitioner, ids, auth_type))
    entries.append(build_provider_organization(provider, ids, settings))
    entries.append(build_insurer_organization(insurer, ids, settings))
    entries.append(build_patient(patient, ids))
    if policy_holder is not None and ids.distinct_policy_holder:
        entries.append(build_policy_holder(policy_holder, ids))
    for index, attachment in enumerate(request.attachments):
        entries.append(build_binary(attachment, ids, index))

    message = message_bundle(EVENT_PRIORAUTH_REQUEST, entries)
    message.identities = ids
    logger.info(
        f"Composed {auth_type.value} prior auth request "
        f"{request.request_number or ids.get(Role.CLAIM)}: "
        f"{len(entries)} entries, {len(request.items)} items"
    )
    return message
