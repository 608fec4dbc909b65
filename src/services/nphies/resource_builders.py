"""
NPHIES Resource Builders.

Source: NPHIES FHIR Implementation Guide (nphies-fs 1.0.0) profiles
Verified: 2025-12-19

One builder per document kind. Each is a pure function of its input
records and the message IdentitySet; builders never allocate identities,
so every reference they emit resolves within the bundle.
"""

from typing import Any, Dict, List, Optional, Tuple
import logging

from src.core.config import NphiesSettings, get_settings
from src.core.enums import AuthorizationType
from src.schemas.prior_auth import (
    Attachment,
    AuthorizationRequest,
    CoverageRecord,
    DiagnosisEntry,
    InsurerRecord,
    PatientRecord,
    PolicyHolderRecord,
    PractitionerRecord,
    ProviderRecord,
)
from src.services.nphies import vocabulary
from src.services.nphies.claim_items import (
    ItemContext,
    compose_items,
    compose_supporting_info,
)
from src.services.nphies.fhir_base import (
    ACT_CODE_SYSTEM,
    ACT_PRIORITY_SYSTEM,
    ADMIT_SOURCE_SYSTEM,
    BundleEntry,
    CARE_TEAM_ROLE_SYSTEM,
    CLAIM_SUBTYPE_SYSTEM,
    CLAIM_TYPE_SYSTEM,
    COVERAGE_CLASS_SYSTEM,
    COVERAGE_PROFILE,
    COVERAGE_TYPE_SYSTEM,
    DIAGNOSIS_ON_ADMISSION_SYSTEM,
    DIAGNOSIS_TYPE_SYSTEM,
    ICD10_AM_SYSTEM,
    INSURER_ORGANIZATION_PROFILE,
    KSA_GENDER_SYSTEM,
    MARITAL_STATUS_SYSTEM,
    MEMBER_ID_SYSTEM,
    MESSAGE_EVENTS_SYSTEM,
    MESSAGE_HEADER_PROFILE,
    OCCUPATION_SYSTEM,
    ORGANIZATION_TYPE_SYSTEM,
    PATIENT_PROFILE,
    PAYEE_TYPE_SYSTEM,
    PAYER_LICENSE_SYSTEM,
    PRACTICE_CODES_SYSTEM,
    PRACTITIONER_LICENSE_SYSTEM,
    PRACTITIONER_PROFILE,
    PRIORAUTH_IDENTIFIER_SYSTEM,
    PROCESS_PRIORITY_SYSTEM,
    PROVIDER_LICENSE_SYSTEM,
    PROVIDER_ORGANIZATION_PROFILE,
    PROVIDER_TYPE_SYSTEM,
    RELATED_CLAIM_RELATIONSHIP_SYSTEM,
    SERVICE_EVENT_TYPE_SYSTEM,
    SERVICE_TYPE_SYSTEM,
    SUBSCRIBER_RELATIONSHIP_SYSTEM,
    TRIAGE_CATEGORY_SYSTEM,
    V2_0203_SYSTEM,
    codeable_concept,
    coding,
    extension,
    format_fhir_date,
    format_fhir_datetime_local,
    format_fhir_instant,
    meta_profile,
    money,
    ordered_resource,
    reference,
    to_decimal,
)
from src.services.nphies.identity import IdentitySet, Role

logger = logging.getLogger(__name__)


# =============================================================================
# Shared Helpers
# =============================================================================


_PATIENT_IDENTIFIER_TYPES = {
    "national_id": ("NI", "National Identifier", "http://nphies.sa/identifier/nationalid"),
    "iqama": ("PRC", "Permanent Resident Card", "http://nphies.sa/identifier/iqama"),
    "passport": ("PPN", "Passport Number", "http://nphies.sa/identifier/passportnumber"),
    "mrn": ("MR", "Medical Record Number", "http://provider.com/identifier/mrn"),
}

_MARITAL_STATUS = {
    "married": "M", "single": "S", "divorced": "D", "widowed": "W", "unknown": "U",
    "m": "M", "s": "S", "d": "D", "w": "W", "u": "U",
}

_PROVIDER_TYPES = {
    "hospital": "1", "polyclinic": "2", "pharmacy": "3", "optical": "4", "optical_shop": "4",
    "clinic": "5", "dental": "5", "dental_clinic": "5", "vision": "5", "vision_clinic": "5",
    "1": "1", "2": "2", "3": "3", "4": "4", "5": "5",
}

_PROVIDER_TYPE_DISPLAYS = {
    "1": "Hospital", "2": "Polyclinic", "3": "Pharmacy", "4": "Optical Shop", "5": "Clinic",
}

# Practice code used when neither request nor practitioner names one
_DEFAULT_PRACTICE_CODES = {
    AuthorizationType.DENTAL: "22.00",
    AuthorizationType.VISION: "11.00",
}


def split_name(full_name: str) -> Tuple[str, List[str]]:
    """Split "Given Middle Family" into (family, [given...])."""
    parts = (full_name or "").split()
    if not parts:
        return "", []
    if len(parts) == 1:
        return parts[0], [parts[0]]
    return parts[-1], parts[:-1]


def provider_identifier_system(provider: ProviderRecord) -> str:
    """Base system for identifiers the provider issues (claims, tasks)."""
    if provider.identifier_system:
        return provider.identifier_system.rstrip("/")
    slug = "".join((provider.provider_name or "provider").lower().split())
    return f"http://{slug}.com.sa/identifiers"


def patient_identifier_type(identifier: Optional[str], declared: str) -> str:
    """
    Resolve the patient identifier type.

    Ten-digit Saudi IDs are self-describing: a leading 1 is a national ID,
    a leading 2 an iqama.
    """
    value = (identifier or "").strip()
    if len(value) == 10 and value.isdigit():
        if value.startswith("1"):
            return "national_id"
        if value.startswith("2"):
            return "iqama"
    declared = (declared or "national_id").strip().lower()
    return declared if declared in _PATIENT_IDENTIFIER_TYPES else "national_id"


def practice_code_for(
    request: AuthorizationRequest,
    auth_type: AuthorizationType,
    practitioner: Optional[PractitionerRecord],
) -> str:
    if request.practice_code:
        return request.practice_code
    if auth_type in _DEFAULT_PRACTICE_CODES:
        return _DEFAULT_PRACTICE_CODES[auth_type]
    if practitioner and practitioner.specialty_code:
        return practitioner.specialty_code
    return "08.00"


def _address(text: Optional[str], city: Optional[str], use: str) -> Optional[List[Dict[str, Any]]]:
    if not text:
        return None
    return [{
        "use": use,
        "text": text,
        "line": [text],
        "city": city or "Riyadh",
        "country": "Saudi Arabia",
    }]


def _person_identifier(identifier: Optional[str], identifier_type: str) -> Dict[str, Any]:
    resolved = patient_identifier_type(identifier, identifier_type)
    code, display, system = _PATIENT_IDENTIFIER_TYPES[resolved]
    return ordered_resource([
        ("extension", [extension(
            "identifier-country",
            valueCodeableConcept=codeable_concept("urn:iso:std:iso:3166", "SAU", "Saudi Arabia"),
        )]),
        ("type", codeable_concept(V2_0203_SYSTEM, code, display)),
        ("system", system),
        ("value", (identifier or "").strip() or "UNKNOWN"),
    ])


def _gender_fields(gender: Optional[str]) -> List[Tuple[str, Any]]:
    code = (gender or "unknown").strip().lower()
    return [
        ("gender", code),
        ("_gender", {"extension": [extension(
            "ksa-administrative-gender",
            valueCodeableConcept=codeable_concept(KSA_GENDER_SYSTEM, code),
        )]}),
    ]


def _human_name(full_name: str) -> List[Dict[str, Any]]:
    family, given = split_name(full_name)
    return [ordered_resource([
        ("use", "official"),
        ("text", full_name),
        ("family", family or None),
        ("given", given),
    ])]


# =============================================================================
# Party Builders
# =============================================================================


def build_patient(patient: PatientRecord, ids: IdentitySet) -> BundleEntry:
    """Patient (subject) entry."""
    marital = _MARITAL_STATUS.get((patient.marital_status or "").strip().lower(), "U")
    resource = ordered_resource([
        ("resourceType", "Patient"),
        ("id", ids.get(Role.SUBJECT)),
        ("meta", meta_profile(PATIENT_PROFILE)),
        ("extension", [extension(
            "occupation",
            valueCodeableConcept=codeable_concept(OCCUPATION_SYSTEM, patient.occupation),
        )]),
        ("identifier", [_person_identifier(patient.identifier or patient.patient_id, patient.identifier_type)]),
        ("active", True),
        ("name", _human_name(patient.name)),
        ("telecom", [{"system": "phone", "value": patient.phone}] if patient.phone else None),
        *_gender_fields(patient.gender),
        ("birthDate", format_fhir_date(patient.birth_date)),
        ("deceasedBoolean", False),
        ("address", _address(patient.address, patient.city, "home")),
        ("maritalStatus", codeable_concept(MARITAL_STATUS_SYSTEM, marital)),
    ])
    return BundleEntry(full_url=ids.full_url(Role.SUBJECT), resource=resource)


def build_policy_holder(holder: PolicyHolderRecord, ids: IdentitySet) -> BundleEntry:
    """Policy holder entry, only when the holder is not the subject."""
    resource = ordered_resource([
        ("resourceType", "Patient"),
        ("id", ids.get(Role.POLICY_HOLDER)),
        ("meta", meta_profile(PATIENT_PROFILE)),
        ("identifier", [_person_identifier(holder.identifier, holder.identifier_type)]),
        ("active", True),
        ("name", _human_name(holder.name)),
        *_gender_fields(holder.gender),
        ("birthDate", format_fhir_date(holder.birth_date)),
    ])
    return BundleEntry(full_url=ids.full_url(Role.POLICY_HOLDER), resource=resource)


def build_provider_organization(
    provider: ProviderRecord,
    ids: IdentitySet,
    settings: Optional[NphiesSettings] = None,
) -> BundleEntry:
    """Provider (facility) Organization entry."""
    settings = settings or get_settings()
    type_code = _PROVIDER_TYPES.get(str(provider.provider_type).strip().lower(), "1")
    resource = ordered_resource([
        ("resourceType", "Organization"),
        ("id", ids.get(Role.FACILITY)),
        ("meta", meta_profile(PROVIDER_ORGANIZATION_PROFILE)),
        ("extension", [extension(
            "provider-type",
            valueCodeableConcept=codeable_concept(
                PROVIDER_TYPE_SYSTEM, type_code, _PROVIDER_TYPE_DISPLAYS[type_code]
            ),
        )]),
        ("identifier", [{
            "system": PROVIDER_LICENSE_SYSTEM,
            "value": provider.nphies_id or settings.DEFAULT_PROVIDER_ID,
        }]),
        ("active", True),
        ("type", [codeable_concept(ORGANIZATION_TYPE_SYSTEM, "prov")]),
        ("name", provider.provider_name),
        ("address", _address(provider.address, provider.city, "work")),
    ])
    return BundleEntry(full_url=ids.full_url(Role.FACILITY), resource=resource)


def build_insurer_organization(
    insurer: InsurerRecord,
    ids: IdentitySet,
    settings: Optional[NphiesSettings] = None,
) -> BundleEntry:
    """Insurer (payer) Organization entry."""
    settings = settings or get_settings()
    resource = ordered_resource([
        ("resourceType", "Organization"),
        ("id", ids.get(Role.PAYER)),
        ("meta", meta_profile(INSURER_ORGANIZATION_PROFILE)),
        ("identifier", [{
            "use": "official",
            "type": codeable_concept(V2_0203_SYSTEM, "NII"),
            "system": PAYER_LICENSE_SYSTEM,
            "value": insurer.nphies_id or settings.DEFAULT_INSURER_ID,
        }]),
        ("active", True),
        ("type", [codeable_concept(ORGANIZATION_TYPE_SYSTEM, "ins", "Insurance Company")]),
        ("name", insurer.insurer_name),
    ])
    return BundleEntry(full_url=ids.full_url(Role.PAYER), resource=resource)


def build_practitioner(
    practitioner: Optional[PractitionerRecord],
    ids: IdentitySet,
    auth_type: AuthorizationType = AuthorizationType.PROFESSIONAL,
) -> BundleEntry:
    """Practitioner entry; falls back to the default practitioner descriptor."""
    practitioner = practitioner or PractitionerRecord()
    practitioner_id = ids.get(Role.PRACTITIONER)
    identifier_type = practitioner.identifier_type or "MD"
    license_value = (
        practitioner.license_number
        or practitioner.nphies_id
        or f"PRACT-{practitioner_id[:8]}"
    )
    specialty = practitioner.specialty_code or _DEFAULT_PRACTICE_CODES.get(auth_type, "08.00")
    resource = ordered_resource([
        ("resourceType", "Practitioner"),
        ("id", practitioner_id),
        ("meta", meta_profile(PRACTITIONER_PROFILE)),
        ("identifier", [{
            "type": codeable_concept(
                V2_0203_SYSTEM,
                identifier_type,
                vocabulary.practitioner_identifier_type_display(identifier_type),
            ),
            "system": PRACTITIONER_LICENSE_SYSTEM,
            "value": license_value,
        }]),
        ("active", True),
        ("name", _human_name(practitioner.name)),
        ("qualification", [{
            "code": codeable_concept(
                PRACTICE_CODES_SYSTEM, specialty, vocabulary.practice_code_display(specialty)
            ),
        }]),
    ])
    return BundleEntry(full_url=ids.full_url(Role.PRACTITIONER), resource=resource)


def build_coverage(coverage: CoverageRecord, ids: IdentitySet) -> BundleEntry:
    """Coverage entry linking subject, policy holder and payer."""
    classes = [{
        "type": codeable_concept(COVERAGE_CLASS_SYSTEM, "plan"),
        "value": coverage.plan_id or "default-plan",
        "name": coverage.plan_name or "Insurance Plan",
    }]
    if coverage.network:
        classes.append({
            "type": codeable_concept(COVERAGE_CLASS_SYSTEM, "network"),
            "value": coverage.network,
            "name": coverage.network_name or "Network",
        })

    period = ordered_resource([
        ("start", format_fhir_date(coverage.start_date)),
        ("end", format_fhir_date(coverage.end_date)),
    ])

    resource = ordered_resource([
        ("resourceType", "Coverage"),
        ("id", ids.get(Role.COVERAGE)),
        ("meta", meta_profile(COVERAGE_PROFILE)),
        ("identifier", [{"system": MEMBER_ID_SYSTEM, "value": coverage.member_id}]),
        ("status", "active"),
        ("type", codeable_concept(
            COVERAGE_TYPE_SYSTEM,
            coverage.coverage_type,
            vocabulary.coverage_type_display(coverage.coverage_type),
        )),
        ("policyHolder", reference(ids.reference(Role.POLICY_HOLDER))),
        ("subscriber", reference(ids.reference(Role.SUBJECT))),
        ("beneficiary", reference(ids.reference(Role.SUBJECT))),
        ("relationship", codeable_concept(
            SUBSCRIBER_RELATIONSHIP_SYSTEM,
            coverage.relationship,
            vocabulary.relationship_display(coverage.relationship),
        )),
        ("period", period),
        ("payor", [reference(ids.reference(Role.PAYER))]),
        ("class", classes),
    ])
    return BundleEntry(full_url=ids.full_url(Role.COVERAGE), resource=resource)


# =============================================================================
# Encounter
# =============================================================================


def effective_encounter_class(request: AuthorizationRequest, auth_type: AuthorizationType) -> str:
    """Dental encounters are always ambulatory."""
    if auth_type is AuthorizationType.DENTAL:
        return "ambulatory"
    return (request.encounter_class or "ambulatory").strip().lower()


def _encounter_extensions(
    request: AuthorizationRequest,
    auth_type: AuthorizationType,
    encounter_class: str,
    offset: str,
) -> List[Dict[str, Any]]:
    if auth_type is AuthorizationType.INSTITUTIONAL:
        return []
    extensions = []
    if encounter_class == "emergency":
        triage = request.triage_category or "U"
        extensions.append(extension(
            "triageCategory",
            valueCodeableConcept=codeable_concept(
                TRIAGE_CATEGORY_SYSTEM, triage, vocabulary.triage_category_display(triage)
            ),
        ))
        extensions.append(extension(
            "triageDate",
            valueDateTime=format_fhir_datetime_local(
                request.triage_date or request.encounter_start, offset
            ),
        ))
    event_type = request.service_event_type or "ICSE"
    extensions.append(extension(
        "serviceEventType",
        valueCodeableConcept=codeable_concept(
            SERVICE_EVENT_TYPE_SYSTEM, event_type, vocabulary.service_event_type_display(event_type)
        ),
    ))
    return extensions


def _service_type(
    request: AuthorizationRequest, auth_type: AuthorizationType, encounter_class: str
) -> Optional[Dict[str, Any]]:
    if auth_type is AuthorizationType.DENTAL:
        code = "dental-care"
    elif request.service_type:
        code = request.service_type
    elif vocabulary.encounter_requires_service_type(encounter_class):
        code = "sub-acute-care"
    else:
        return None
    return codeable_concept(SERVICE_TYPE_SYSTEM, code, vocabulary.service_type_display(code))


def _hospitalization(request: AuthorizationRequest) -> Dict[str, Any]:
    specialty = request.admission_specialty or "08.00"
    admit_source = request.admit_source or "WKIN"
    return {
        "extension": [extension(
            "admissionSpecialty",
            valueCodeableConcept=codeable_concept(
                PRACTICE_CODES_SYSTEM, specialty, vocabulary.practice_code_display(specialty)
            ),
        )],
        "admitSource": codeable_concept(
            ADMIT_SOURCE_SYSTEM, admit_source, vocabulary.admit_source_display(admit_source)
        ),
    }


def build_encounter(
    request: AuthorizationRequest,
    auth_type: AuthorizationType,
    ids: IdentitySet,
    settings: Optional[NphiesSettings] = None,
) -> BundleEntry:
    """
    Encounter entry.

    Field order is fixed: identifier, status, class, serviceType, priority,
    subject, period, hospitalization, serviceProvider. NPHIES rejects
    encounters whose elements arrive out of order.
    """
    settings = settings or get_settings()
    encounter_id = ids.get(Role.ENCOUNTER)
    encounter_class = effective_encounter_class(request, auth_type)
    offset = settings.TIMEZONE_OFFSET

    identifier_value = (
        request.encounter_identifier
        or request.request_number
        or f"ENC-{encounter_id[:8]}"
    )
    default_status = "planned" if auth_type is AuthorizationType.INSTITUTIONAL else "in-progress"

    priority = None
    if encounter_class == "emergency" or request.encounter_priority:
        priority_code = request.encounter_priority or "EM"
        priority = codeable_concept(
            ACT_PRIORITY_SYSTEM, priority_code, vocabulary.encounter_priority_display(priority_code)
        )

    period = ordered_resource([
        ("start", format_fhir_datetime_local(request.encounter_start or request.request_date, offset)),
        ("end", format_fhir_datetime_local(request.encounter_end, offset) if request.encounter_end else None),
    ])

    hospitalization = None
    if auth_type is AuthorizationType.INSTITUTIONAL:
        hospitalization = _hospitalization(request)

    resource = ordered_resource([
        ("resourceType", "Encounter"),
        ("id", encounter_id),
        ("meta", meta_profile(vocabulary.encounter_profile_url(encounter_class))),
        ("extension", _encounter_extensions(request, auth_type, encounter_class, offset)),
        ("identifier", [{
            "system": f"http://{settings.PROVIDER_DOMAIN}.com.sa/identifiers/encounter",
            "value": identifier_value,
        }]),
        ("status", request.encounter_status or default_status),
        ("class", {
            "system": ACT_CODE_SYSTEM,
            "code": vocabulary.encounter_class_code(encounter_class),
            "display": vocabulary.encounter_class_display(encounter_class),
        }),
        ("serviceType", _service_type(request, auth_type, encounter_class)),
        ("priority", priority),
        ("subject", reference(ids.reference(Role.SUBJECT))),
        ("period", period),
        ("hospitalization", hospitalization),
        ("serviceProvider", reference(ids.reference(Role.FACILITY))),
    ])
    return BundleEntry(full_url=ids.full_url(Role.ENCOUNTER), resource=resource)


# =============================================================================
# Claim
# =============================================================================


def sequence_diagnoses(diagnoses: List[DiagnosisEntry]) -> List[Tuple[int, DiagnosisEntry]]:
    """
    Assign diagnosis sequences.

    Stored sequences are kept when present and unique; otherwise diagnoses
    are numbered 1..n in order.
    """
    stored = [entry.sequence for entry in diagnoses]
    if all(seq is not None for seq in stored) and len(set(stored)) == len(stored):
        return sorted(zip(stored, diagnoses), key=lambda pair: pair[0])
    return list(enumerate(diagnoses, start=1))


def _principal_sequence(sequenced: List[Tuple[int, DiagnosisEntry]]) -> Optional[int]:
    for seq, entry in sequenced:
        if entry.diagnosis_type == "principal":
            return seq
    return sequenced[0][0] if sequenced else None


def _claim_extensions(
    request: AuthorizationRequest,
    ids: IdentitySet,
    settings: NphiesSettings,
) -> List[Dict[str, Any]]:
    extensions = []
    if Role.ENCOUNTER in ids:
        extensions.append(extension(
            "encounter", valueReference=reference(ids.reference(Role.ENCOUNTER))
        ))
    if request.eligibility_offline_ref:
        extensions.append(extension(
            "eligibility-offline-reference", valueString=request.eligibility_offline_ref
        ))
    if request.eligibility_offline_date:
        extensions.append(extension(
            "eligibility-offline-date",
            valueDateTime=format_fhir_date(request.eligibility_offline_date),
        ))

    eligibility_id = request.eligibility_response_id
    if not eligibility_id and request.eligibility_ref:
        eligibility_id = request.eligibility_ref.rsplit("/", 1)[-1]
    if eligibility_id:
        system = (
            request.eligibility_response_system
            or f"http://{settings.INSURER_DOMAIN}.com.sa/identifiers/coverageeligibilityresponse"
        )
        extensions.append(extension(
            "eligibility-response",
            valueReference={"identifier": {"system": system, "value": eligibility_id}},
        ))

    if request.is_transfer:
        extensions.append(extension("transfer", valueBoolean=True))
    if request.is_newborn:
        extensions.append(extension("newborn", valueBoolean=True))
    return extensions


def _related(request: AuthorizationRequest, identifier_system: str) -> List[Dict[str, Any]]:
    related = []
    prior = codeable_concept(RELATED_CLAIM_RELATIONSHIP_SYSTEM, "prior")
    if request.is_resubmission and request.related_claim_identifier:
        related.append({
            "claim": {"identifier": {
                "system": f"{identifier_system}/authorization",
                "value": request.related_claim_identifier,
            }},
            "relationship": prior,
        })
    if request.is_update and request.pre_auth_ref:
        related.append({
            "claim": {"identifier": {
                "system": PRIORAUTH_IDENTIFIER_SYSTEM,
                "value": request.pre_auth_ref,
            }},
            "relationship": prior,
        })
    return related


def _diagnosis_block(
    sequenced: List[Tuple[int, DiagnosisEntry]], auth_type: AuthorizationType
) -> List[Dict[str, Any]]:
    block = []
    for seq, entry in sequenced:
        on_admission = None
        if auth_type is AuthorizationType.INSTITUTIONAL and entry.on_admission:
            on_admission = codeable_concept(DIAGNOSIS_ON_ADMISSION_SYSTEM, entry.on_admission.lower())
        block.append(ordered_resource([
            ("sequence", seq),
            ("diagnosisCodeableConcept", codeable_concept(ICD10_AM_SYSTEM, entry.code, entry.display)),
            ("type", [codeable_concept(DIAGNOSIS_TYPE_SYSTEM, entry.diagnosis_type)]),
            ("onAdmission", on_admission),
        ]))
    return block


def build_claim(
    request: AuthorizationRequest,
    auth_type: AuthorizationType,
    ids: IdentitySet,
    provider: ProviderRecord,
    practitioner: Optional[PractitionerRecord] = None,
    settings: Optional[NphiesSettings] = None,
) -> BundleEntry:
    """
    Claim (use=preauthorization) entry.

    Supporting info is composed before items so every item can link to the
    finished sequence list. The total is ``request.total_amount`` when
    given, otherwise the sum of item nets.
    """
    settings = settings or get_settings()
    plan = vocabulary.document_plan(auth_type)
    encounter_class = effective_encounter_class(request, auth_type)
    currency = request.currency or settings.DEFAULT_CURRENCY
    identifier_system = provider_identifier_system(provider)

    has_care_team = plan.has_care_team and Role.PRACTITIONER in ids
    care_team = None
    if has_care_team:
        practice = practice_code_for(request, auth_type, practitioner)
        care_team = [{
            "sequence": 1,
            "provider": reference(ids.reference(Role.PRACTITIONER)),
            "role": codeable_concept(CARE_TEAM_ROLE_SYSTEM, "primary"),
            "qualification": codeable_concept(
                PRACTICE_CODES_SYSTEM, practice, vocabulary.practice_code_display(practice)
            ),
        }]

    sequenced_diagnoses = sequence_diagnoses(request.diagnoses)
    supporting = compose_supporting_info(request, auth_type)
    items = compose_items(request, ItemContext(
        auth_type=auth_type,
        currency=currency,
        supporting_info=supporting,
        diagnosis_sequences=[seq for seq, _ in sequenced_diagnoses],
        principal_diagnosis=_principal_sequence(sequenced_diagnoses),
        care_team_sequences=[1] if has_care_team else [],
        period_start=request.encounter_start if plan.has_encounter else None,
        period_end=request.encounter_end if plan.has_encounter else None,
    ))

    total = to_decimal(request.total_amount)
    if total is None:
        total = items.total_net

    facility = None
    if (
        auth_type is AuthorizationType.PROFESSIONAL
        and vocabulary.encounter_class_code(encounter_class) in ("AMB", "VR")
    ):
        facility = reference(ids.reference(Role.FACILITY))

    resource = ordered_resource([
        ("resourceType", "Claim"),
        ("id", ids.get(Role.CLAIM)),
        ("meta", meta_profile(vocabulary.authorization_profile_url(auth_type.value))),
        ("extension", _claim_extensions(request, ids, settings)),
        ("identifier", [{
            "system": f"{identifier_system}/authorization",
            "value": request.request_number or ids.get(Role.CLAIM),
        }]),
        ("status", "active"),
        ("type", codeable_concept(CLAIM_TYPE_SYSTEM, vocabulary.claim_type_code(auth_type.value))),
        ("subType", codeable_concept(
            CLAIM_SUBTYPE_SYSTEM, vocabulary.claim_subtype_code(auth_type.value, encounter_class)
        )),
        ("use", "preauthorization"),
        ("patient", reference(ids.reference(Role.SUBJECT))),
        ("created", format_fhir_instant(request.request_date)),
        ("insurer", reference(ids.reference(Role.PAYER))),
        ("provider", reference(ids.reference(Role.FACILITY))),
        ("priority", codeable_concept(PROCESS_PRIORITY_SYSTEM, request.priority or "normal")),
        ("related", _related(request, identifier_system)),
        ("payee", {"type": codeable_concept(PAYEE_TYPE_SYSTEM, "provider")}),
        ("facility", facility),
        ("careTeam", care_team),
        ("supportingInfo", supporting.entries),
        ("diagnosis", _diagnosis_block(sequenced_diagnoses, auth_type)),
        ("insurance", [{
            "sequence": 1,
            "focal": True,
            "coverage": reference(ids.reference(Role.COVERAGE)),
        }]),
        ("item", items.entries),
        ("total", money(total, currency)),
    ])
    return BundleEntry(full_url=ids.full_url(Role.CLAIM), resource=resource)


# =============================================================================
# Binary and Message Header
# =============================================================================


def build_binary(attachment: Attachment, ids: IdentitySet, index: int) -> BundleEntry:
    """Binary entry for the attachment at ``index``."""
    resource = {
        "resourceType": "Binary",
        "id": ids.attachments[index],
        "contentType": attachment.content_type,
        "data": attachment.base64_content,
    }
    return BundleEntry(full_url=ids.attachment_full_url(index), resource=resource)


def message_header_resource(
    header_id: str,
    event_code: str,
    provider: ProviderRecord,
    insurer: InsurerRecord,
    focus_full_url: str,
    settings: NphiesSettings,
    source_endpoint: Optional[str] = None,
) -> Dict[str, Any]:
    """MessageHeader resource shared by request and cancel messages."""
    payer_license = insurer.nphies_id or settings.DEFAULT_INSURER_ID
    return ordered_resource([
        ("resourceType", "MessageHeader"),
        ("id", header_id),
        ("meta", meta_profile(MESSAGE_HEADER_PROFILE)),
        ("eventCoding", coding(MESSAGE_EVENTS_SYSTEM, event_code)),
        ("destination", [{
            "endpoint": f"{PAYER_LICENSE_SYSTEM}/{payer_license}",
            "receiver": {
                "type": "Organization",
                "identifier": {"system": PAYER_LICENSE_SYSTEM, "value": payer_license},
            },
        }]),
        ("sender", {
            "type": "Organization",
            "identifier": {
                "system": PROVIDER_LICENSE_SYSTEM,
                "value": provider.nphies_id or settings.DEFAULT_PROVIDER_ID,
            },
        }),
        ("source", {"endpoint": source_endpoint or settings.FULL_URL_BASE}),
        ("focus", [reference(focus_full_url)]),
    ])


def build_message_header(
    ids: IdentitySet,
    provider: ProviderRecord,
    insurer: InsurerRecord,
    event_code: str,
    settings: Optional[NphiesSettings] = None,
) -> BundleEntry:
    """MessageHeader entry focused on the claim."""
    settings = settings or get_settings()
    resource = message_header_resource(
        header_id=ids.get(Role.MESSAGE_HEADER),
        event_code=event_code,
        provider=provider,
        insurer=insurer,
        focus_full_url=ids.full_url(Role.CLAIM),
        settings=settings,
    )
    return BundleEntry(full_url=ids.full_url(Role.MESSAGE_HEADER), resource=resource)
