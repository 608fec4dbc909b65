"""
NPHIES FHIR Base Primitives.

Source: NPHIES FHIR Implementation Guide (nphies-fs 1.0.0)
Verified: 2025-12-19

Provides the building blocks shared by every NPHIES message module:
- Exception hierarchy for composition failures
- Integration constants (profile URLs, code systems, extension URLs)
- Date/time and money formatting
- Ordered resource construction and small FHIR datatype helpers
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class NphiesError(Exception):
    """NPHIES message error with detailed context."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        field_name: Optional[str] = None,
        request_number: Optional[str] = None,
    ):
        self.message = message
        self.resource_type = resource_type
        self.field_name = field_name
        self.request_number = request_number
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.resource_type:
            parts.append(f"Resource: {self.resource_type}")
        if self.field_name:
            parts.append(f"Field: {self.field_name}")
        if self.request_number:
            parts.append(f"Request: {self.request_number}")
        return " | ".join(parts)


class CompositionError(NphiesError):
    """Required correlated data is missing for an outgoing message."""

    pass


class IdentityAllocationError(NphiesError):
    """Identity coordinator used more than once for a single message."""

    pass


# =============================================================================
# Integration Constants
# =============================================================================


STRUCTURE_DEFINITION_BASE = "http://nphies.sa/fhir/ksa/nphies-fs/StructureDefinition"
TERMINOLOGY_BASE = "http://nphies.sa/terminology/CodeSystem"
PROFILE_VERSION = "1.0.0"


def profile_url(name: str) -> str:
    """Versioned NPHIES profile URL, e.g. ``.../encounter|1.0.0``."""
    return f"{STRUCTURE_DEFINITION_BASE}/{name}|{PROFILE_VERSION}"


def extension_url(name: str) -> str:
    """NPHIES extension URL, e.g. ``.../extension-encounter``."""
    return f"{STRUCTURE_DEFINITION_BASE}/extension-{name}"


def nphies_system(name: str) -> str:
    """NPHIES terminology code system URL."""
    return f"{TERMINOLOGY_BASE}/{name}"


BUNDLE_PROFILE = profile_url("bundle")
MESSAGE_HEADER_PROFILE = profile_url("message-header")
ENCOUNTER_PROFILE = profile_url("encounter")
COVERAGE_PROFILE = profile_url("coverage")
PATIENT_PROFILE = profile_url("patient")
PRACTITIONER_PROFILE = profile_url("practitioner")
PROVIDER_ORGANIZATION_PROFILE = profile_url("provider-organization")
INSURER_ORGANIZATION_PROFILE = profile_url("insurer-organization")
TASK_PROFILE = profile_url("task")

# Message events
MESSAGE_EVENTS_SYSTEM = nphies_system("ksa-message-events")
EVENT_PRIORAUTH_REQUEST = "priorauth-request"
EVENT_PRIORAUTH_RESPONSE = "priorauth-response"
EVENT_CANCEL_REQUEST = "cancel-request"

# Licenses
PROVIDER_LICENSE_SYSTEM = "http://nphies.sa/license/provider-license"
PAYER_LICENSE_SYSTEM = "http://nphies.sa/license/payer-license"
PRACTITIONER_LICENSE_SYSTEM = "http://nphies.sa/license/practitioner-license"

# HL7 code systems
V2_0203_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-0203"
ACT_CODE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ActCode"
ACT_PRIORITY_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ActPriority"
MARITAL_STATUS_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-MaritalStatus"
CLAIM_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/claim-type"
PROCESS_PRIORITY_SYSTEM = "http://terminology.hl7.org/CodeSystem/processpriority"
PAYEE_TYPE_SYSTEM = "http://terminology.hl7.org/CodeSystem/payeetype"
CARE_TEAM_ROLE_SYSTEM = "http://terminology.hl7.org/CodeSystem/claimcareteamrole"
SUBSCRIBER_RELATIONSHIP_SYSTEM = "http://terminology.hl7.org/CodeSystem/subscriber-relationship"
COVERAGE_CLASS_SYSTEM = "http://terminology.hl7.org/CodeSystem/coverage-class"
ICD10_AM_SYSTEM = "http://hl7.org/fhir/sid/icd-10-am"
SNOMED_SYSTEM = "http://snomed.info/sct"
UCUM_SYSTEM = "http://unitsofmeasure.org"

# NPHIES code systems
CLAIM_SUBTYPE_SYSTEM = nphies_system("claim-subtype")
PRACTICE_CODES_SYSTEM = nphies_system("practice-codes")
DIAGNOSIS_TYPE_SYSTEM = nphies_system("diagnosis-type")
DIAGNOSIS_ON_ADMISSION_SYSTEM = nphies_system("diagnosis-on-admission")
SUPPORTING_INFO_CATEGORY_SYSTEM = nphies_system("claim-information-category")
SUPPORTING_INFO_REASON_SYSTEM = nphies_system("supporting-info-reason")
PROCEDURES_SYSTEM = nphies_system("procedures")
ORAL_HEALTH_OP_SYSTEM = nphies_system("oral-health-op")
MEDICATION_CODES_SYSTEM = nphies_system("medication-codes")
MEDICAL_DEVICES_SYSTEM = nphies_system("medical-devices")
FDI_ORAL_REGION_SYSTEM = nphies_system("fdi-oral-region")
FDI_TOOTH_SURFACE_SYSTEM = nphies_system("fdi-tooth-surface")
BODY_SITE_SYSTEM = nphies_system("body-site")
SERVICE_TYPE_SYSTEM = nphies_system("service-type")
ADMIT_SOURCE_SYSTEM = nphies_system("admit-source")
TRIAGE_CATEGORY_SYSTEM = nphies_system("triage-category")
SERVICE_EVENT_TYPE_SYSTEM = nphies_system("service-event-type")
COVERAGE_TYPE_SYSTEM = nphies_system("coverage-type")
RELATED_CLAIM_RELATIONSHIP_SYSTEM = nphies_system("related-claim-relationship")
PHARMACIST_SELECTION_REASON_SYSTEM = nphies_system("pharmacist-selection-reason")
PHARMACIST_SUBSTITUTE_SYSTEM = nphies_system("pharmacist-substitute")
OCCUPATION_SYSTEM = nphies_system("occupation")
KSA_GENDER_SYSTEM = nphies_system("ksa-administrative-gender")
PROVIDER_TYPE_SYSTEM = nphies_system("provider-type")
ORGANIZATION_TYPE_SYSTEM = nphies_system("organization-type")
META_TAG_SYSTEM = nphies_system("meta-tag")
TASK_CODE_SYSTEM = nphies_system("task-code")
TASK_REASON_CODE_SYSTEM = nphies_system("task-reason-code")

PRIORAUTH_IDENTIFIER_SYSTEM = "http://nphies.sa/identifiers/priorauth"
MEMBER_ID_SYSTEM = "http://payer.com/memberid"

NPHIES_GENERATED_TAG = "nphies-generated"


# =============================================================================
# Date and Money Formatting
# =============================================================================


DateLike = Union[date, datetime, str]


def _coerce_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_fhir_date(value: Optional[DateLike]) -> Optional[str]:
    """Format as FHIR date (YYYY-MM-DD)."""
    if value is None or value == "":
        return None
    return _coerce_datetime(value).strftime("%Y-%m-%d")


def format_fhir_instant(value: Optional[DateLike] = None) -> str:
    """Format as a UTC FHIR instant; defaults to now."""
    if value is None or value == "":
        moment = datetime.now(timezone.utc)
    else:
        moment = _coerce_datetime(value)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_fhir_datetime_local(value: Optional[DateLike], offset: str = "+03:00") -> str:
    """
    Format as dateTime with seconds and a fixed offset.

    Naive values are treated as wall-clock time in the provider's zone, so
    the offset is appended rather than converted.
    """
    moment = datetime.now() if value is None or value == "" else _coerce_datetime(value)
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + offset


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Coerce a numeric input to Decimal, returning ``default`` when empty."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning(f"Non-numeric amount {value!r}; using {default}")
        return default


def to_fhir_decimal(value: Decimal, places: int = 2) -> Union[int, float]:
    """
    Render a Decimal for JSON.

    Integral values stay integers (205, not 205.0).
    """
    rounded = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    if rounded == rounded.to_integral_value():
        return int(rounded)
    return float(rounded)


# =============================================================================
# Resource Construction Helpers
# =============================================================================


Pairs = Iterable[Tuple[str, Any]]


def ordered_resource(pairs: Pairs) -> Dict[str, Any]:
    """
    Build a resource from an explicit (key, value) sequence.

    Keys land in the order given; pairs whose value is None or an empty
    list/dict are dropped.
    """
    resource: Dict[str, Any] = {}
    for key, value in pairs:
        if value is None:
            continue
        if isinstance(value, (list, dict)) and not value:
            continue
        resource[key] = value
    return resource


def coding(system: str, code: Any, display: Optional[str] = None) -> Dict[str, Any]:
    """Coding with optional display."""
    return ordered_resource([("system", system), ("code", code), ("display", display)])


def codeable_concept(
    system: str,
    code: Any,
    display: Optional[str] = None,
    text: Optional[str] = None,
) -> Dict[str, Any]:
    """CodeableConcept carrying a single coding."""
    return ordered_resource([("coding", [coding(system, code, display)]), ("text", text)])


def money(value: Decimal, currency: str) -> Dict[str, Any]:
    return {"value": to_fhir_decimal(value), "currency": currency}


def reference(ref: str) -> Dict[str, str]:
    return {"reference": ref}


def meta_profile(profile: str) -> Dict[str, List[str]]:
    return {"profile": [profile]}


def extension(url_name: str, **value: Any) -> Dict[str, Any]:
    """
    Extension with one ``value[x]`` element.

    Example:
        extension("package", valueBoolean=False)
    """
    (value_key, value_data), = value.items()
    return {"url": extension_url(url_name), value_key: value_data}


def find_extension(element: Dict[str, Any], url_fragment: str) -> Optional[Dict[str, Any]]:
    """First extension whose URL contains ``url_fragment``."""
    for ext in element.get("extension") or []:
        if isinstance(ext, dict) and url_fragment in str(ext.get("url", "")):
            return ext
    return None


def first_coding(concept: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """First coding of a CodeableConcept, or an empty dict."""
    if not isinstance(concept, dict):
        return {}
    codings = concept.get("coding") or []
    if codings and isinstance(codings[0], dict):
        return codings[0]
    return {}


@dataclass(frozen=True)
class BundleEntry:
    """One ``Bundle.entry``: fullUrl plus resource."""

    full_url: str
    resource: Dict[str, Any]

    @property
    def resource_type(self) -> str:
        return self.resource.get("resourceType", "")

    @property
    def resource_id(self) -> str:
        return self.resource.get("id", "")

    def to_dict(self) -> Dict[str, Any]:
        return {"fullUrl": self.full_url, "resource": self.resource}
