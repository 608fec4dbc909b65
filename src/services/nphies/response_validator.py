"""
NPHIES Response Structural Validation.

Source: FHIR R4 message Bundle rules; NPHIES priorauth-response use case
Verified: 2025-12-19

Checks the envelope of an incoming message before it is parsed. Violations
are aggregated; a container that is missing or not a Bundle stops the
remaining checks.
"""

from dataclasses import dataclass, field
from typing import Any, List

from src.services.nphies.fhir_base import EVENT_PRIORAUTH_RESPONSE


@dataclass
class ValidationReport:
    """Result of structural validation."""
    valid: bool
    errors: List[str] = field(default_factory=list)


def _resource_type(entry: Any) -> Any:
    if not isinstance(entry, dict):
        return None
    resource = entry.get("resource")
    return resource.get("resourceType") if isinstance(resource, dict) else None


def validate_response(bundle: Any, expected_event: str = EVENT_PRIORAUTH_RESPONSE) -> ValidationReport:
    """
    Validate the structure of a response message bundle.

    Args:
        bundle: Decoded response bundle
        expected_event: Event code the MessageHeader must carry

    Returns:
        ValidationReport with every violation found
    """
    errors: List[str] = []

    if not bundle:
        return ValidationReport(valid=False, errors=["Response is empty"])

    if not isinstance(bundle, dict) or bundle.get("resourceType") != "Bundle":
        return ValidationReport(valid=False, errors=["Response is not a FHIR Bundle"])

    if bundle.get("type") != "message":
        errors.append('Bundle type is not "message"')

    entries = bundle.get("entry")
    if not isinstance(entries, list):
        errors.append("Bundle has no entries")
        return ValidationReport(valid=False, errors=errors)

    first = entries[0] if entries else None
    if _resource_type(first) != "MessageHeader":
        errors.append("First entry must be MessageHeader")

    event_code = None
    if isinstance(first, dict) and isinstance(first.get("resource"), dict):
        event_coding = first["resource"].get("eventCoding")
        if isinstance(event_coding, dict):
            event_code = event_coding.get("code")
    if event_code != expected_event:
        errors.append(f"Expected {expected_event} event, got: {event_code}")

    types = {_resource_type(entry) for entry in entries}
    if "ClaimResponse" not in types and "OperationOutcome" not in types:
        errors.append("Bundle must contain ClaimResponse or OperationOutcome")

    return ValidationReport(valid=not errors, errors=errors)
