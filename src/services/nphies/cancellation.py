"""
NPHIES Cancel Request Composition.

Source: NPHIES FHIR Implementation Guide, cancel use case (Task code=cancel)
Verified: 2025-12-19

Bundle structure:
1. MessageHeader (eventCoding = cancel-request)
2. Task (code = cancel), focused on the original request identifier
3. Organization (insurer)
4. Organization (provider)
"""

from datetime import date
from typing import Any, Dict, Optional
import logging

from src.core.config import NphiesSettings, get_settings
from src.schemas.prior_auth import AuthorizationRequest, InsurerRecord, ProviderRecord
from src.services.nphies import vocabulary
from src.services.nphies.bundle_assembler import OutgoingMessage, message_bundle
from src.services.nphies.fhir_base import (
    BundleEntry,
    CompositionError,
    EVENT_CANCEL_REQUEST,
    TASK_CODE_SYSTEM,
    TASK_PROFILE,
    TASK_REASON_CODE_SYSTEM,
    codeable_concept,
    format_fhir_date,
    meta_profile,
    ordered_resource,
    reference,
)
from src.services.nphies.identity import IdentityCoordinator, IdentitySet, Role
from src.services.nphies.resource_builders import (
    build_insurer_organization,
    build_provider_organization,
    message_header_resource,
    provider_identifier_system,
)

logger = logging.getLogger(__name__)


def cancel_focus_identifier(request: AuthorizationRequest) -> str:
    """
    Identifier of the request being cancelled.

    Prefers the provider's own request number, then the NPHIES request id,
    then the pre-auth reference returned by the payer.
    """
    value = request.request_number or request.nphies_request_id or request.pre_auth_ref
    if not value:
        raise CompositionError(
            "Cannot cancel a request without request_number, nphies_request_id or pre_auth_ref",
            resource_type="Task",
            field_name="focus.identifier",
        )
    return value


def build_cancel_task(
    request: AuthorizationRequest,
    provider: ProviderRecord,
    ids: IdentitySet,
    reason: Optional[str],
    today: Optional[date] = None,
) -> BundleEntry:
    """Task resource asking the payer to cancel a prior request."""
    identifier_system = provider_identifier_system(provider)
    focus_value = cancel_focus_identifier(request)
    task_suffix = request.request_number or (request.id or ids.get(Role.TASK))[:8]
    reason_code, reason_display = vocabulary.cancel_reason(reason)
    authored = format_fhir_date(today or date.today())

    resource = ordered_resource([
        ("resourceType", "Task"),
        ("id", ids.get(Role.TASK)),
        ("meta", meta_profile(TASK_PROFILE)),
        ("identifier", [{"system": f"{identifier_system}/task", "value": f"Cancel_{task_suffix}"}]),
        ("status", "requested"),
        ("intent", "order"),
        ("priority", "routine"),
        ("code", codeable_concept(TASK_CODE_SYSTEM, "cancel")),
        ("reasonCode", codeable_concept(TASK_REASON_CODE_SYSTEM, reason_code, reason_display)),
        ("focus", {
            "type": "Claim",
            "identifier": {"system": f"{identifier_system}/authorization", "value": focus_value},
        }),
        ("authoredOn", authored),
        ("lastModified", authored),
        ("requester", reference(ids.reference(Role.FACILITY))),
        ("owner", reference(ids.reference(Role.PAYER))),
    ])
    return BundleEntry(full_url=ids.full_url(Role.TASK), resource=resource)


def compose_cancel_request(
    request: AuthorizationRequest,
    provider: ProviderRecord,
    insurer: InsurerRecord,
    reason: Optional[str] = None,
    settings: Optional[NphiesSettings] = None,
) -> OutgoingMessage:
    """
    Compose a cancel-request message for a previously submitted request.

    Args:
        request: The original authorization request
        provider: Requesting facility
        insurer: Payer that holds the request
        reason: Free-text or coded cancel reason (WI, NP, TAS, SU, resubmission)
        settings: Integration settings (global settings when omitted)

    Raises:
        CompositionError: If the original request has no usable identifier
    """
    settings = settings or get_settings()

    # Fail before allocating anything
    cancel_focus_identifier(request)

    ids = IdentityCoordinator(base_url=settings.FULL_URL_BASE).allocate(
        [Role.MESSAGE_HEADER, Role.TASK, Role.FACILITY, Role.PAYER],
        preferred={Role.FACILITY: provider.provider_id, Role.PAYER: insurer.insurer_id},
    )

    task = build_cancel_task(request, provider, ids, reason)
    slug = "".join((provider.provider_name or "provider").lower().split())
    header: Dict[str, Any] = message_header_resource(
        header_id=ids.get(Role.MESSAGE_HEADER),
        event_code=EVENT_CANCEL_REQUEST,
        provider=provider,
        insurer=insurer,
        focus_full_url=task.full_url,
        settings=settings,
        source_endpoint=f"http://{slug}.com",
    )

    entries = [
        BundleEntry(full_url=ids.full_url(Role.MESSAGE_HEADER), resource=header),
        task,
        build_insurer_organization(insurer, ids, settings),
        build_provider_organization(provider, ids, settings),
    ]
    message = message_bundle(EVENT_CANCEL_REQUEST, entries)
    message.identities = ids
    logger.info(
        f"Composed cancel request for {cancel_focus_identifier(request)} "
        f"(reason {task.resource['reasonCode']['coding'][0]['code']})"
    )
    return message
