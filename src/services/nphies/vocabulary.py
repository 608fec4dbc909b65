"""
NPHIES Vocabulary Resolver.

Source: NPHIES FHIR Implementation Guide (nphies-fs 1.0.0) code systems
Verified: 2025-12-19

Pure lookup functions mapping request enumerations to NPHIES profile URLs,
codes and display strings. Unknown input never raises; every resolver
returns its documented default instead.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from src.core.enums import AuthorizationType
from src.services.nphies.fhir_base import (
    ENCOUNTER_PROFILE,
    SNOMED_SYSTEM,
    nphies_system,
    profile_url,
)


# =============================================================================
# Authorization Type
# =============================================================================


_AUTH_TYPE_ALIASES: Dict[str, AuthorizationType] = {
    "professional": AuthorizationType.PROFESSIONAL,
    "institutional": AuthorizationType.INSTITUTIONAL,
    "inpatient": AuthorizationType.INSTITUTIONAL,
    "daycase": AuthorizationType.INSTITUTIONAL,
    "dental": AuthorizationType.DENTAL,
    "oral": AuthorizationType.DENTAL,
    "vision": AuthorizationType.VISION,
    "ophthalmic": AuthorizationType.VISION,
    "pharmacy": AuthorizationType.PHARMACY,
    "medication": AuthorizationType.PHARMACY,
    "rx": AuthorizationType.PHARMACY,
}

# Profile slug per type; dental is "oral" on the wire
_AUTH_PROFILE_SLUGS: Dict[AuthorizationType, str] = {
    AuthorizationType.INSTITUTIONAL: "institutional-priorauth",
    AuthorizationType.PROFESSIONAL: "professional-priorauth",
    AuthorizationType.PHARMACY: "pharmacy-priorauth",
    AuthorizationType.DENTAL: "oral-priorauth",
    AuthorizationType.VISION: "vision-priorauth",
}


def resolve_authorization_type(value: Optional[str]) -> AuthorizationType:
    """Map a type name or alias to AuthorizationType, defaulting to professional."""
    if isinstance(value, AuthorizationType):
        return value
    return _AUTH_TYPE_ALIASES.get((value or "").strip().lower(), AuthorizationType.PROFESSIONAL)


def authorization_profile_url(auth_type: Optional[str]) -> str:
    return profile_url(_AUTH_PROFILE_SLUGS[resolve_authorization_type(auth_type)])


def claim_type_code(auth_type: Optional[str]) -> str:
    """claim-type code: dental is sent as ``oral``."""
    resolved = resolve_authorization_type(auth_type)
    if resolved is AuthorizationType.DENTAL:
        return "oral"
    return resolved.value


@dataclass(frozen=True)
class DocumentPlan:
    """Which optional documents a request type carries."""

    has_encounter: bool
    has_care_team: bool


_DOCUMENT_PLANS: Dict[AuthorizationType, DocumentPlan] = {
    AuthorizationType.PROFESSIONAL: DocumentPlan(has_encounter=True, has_care_team=True),
    AuthorizationType.INSTITUTIONAL: DocumentPlan(has_encounter=True, has_care_team=True),
    AuthorizationType.DENTAL: DocumentPlan(has_encounter=True, has_care_team=True),
    AuthorizationType.VISION: DocumentPlan(has_encounter=False, has_care_team=True),
    AuthorizationType.PHARMACY: DocumentPlan(has_encounter=False, has_care_team=False),
}


def document_plan(auth_type: Optional[str]) -> DocumentPlan:
    return _DOCUMENT_PLANS[resolve_authorization_type(auth_type)]


# =============================================================================
# Encounter Class
# =============================================================================


# class -> (ActCode, display, requires serviceType)
_ENCOUNTER_CLASSES: Dict[str, Tuple[str, str, bool]] = {
    "ambulatory": ("AMB", "ambulatory", False),
    "outpatient": ("AMB", "ambulatory", False),
    "emergency": ("EMER", "emergency", False),
    "home": ("HH", "home health", False),
    "inpatient": ("IMP", "inpatient encounter", True),
    "daycase": ("SS", "short stay", True),
    "telemedicine": ("VR", "virtual", False),
}
_DEFAULT_ENCOUNTER_CLASS = _ENCOUNTER_CLASSES["ambulatory"]


def _encounter_class(encounter_class: Optional[str]) -> Tuple[str, str, bool]:
    return _ENCOUNTER_CLASSES.get((encounter_class or "").strip().lower(), _DEFAULT_ENCOUNTER_CLASS)


def encounter_profile_url(encounter_class: Optional[str] = None) -> str:
    """Encounter profile; NPHIES uses one profile for every class."""
    return ENCOUNTER_PROFILE


def encounter_class_code(encounter_class: Optional[str]) -> str:
    return _encounter_class(encounter_class)[0]


def encounter_class_display(encounter_class: Optional[str]) -> str:
    return _encounter_class(encounter_class)[1]


def encounter_requires_service_type(encounter_class: Optional[str]) -> bool:
    return _encounter_class(encounter_class)[2]


_CLAIM_SUBTYPES: Dict[str, str] = {
    "inpatient": "ip",
    "daycase": "ip",
    "outpatient": "op",
    "ambulatory": "op",
    "home": "op",
    "telemedicine": "op",
    "emergency": "emr",
}


def claim_subtype_code(auth_type: Optional[str], encounter_class: Optional[str]) -> str:
    """
    claim-subtype from (authorization type, encounter class).

    Institutional is always ``ip``; dental and vision are always ``op``.
    """
    resolved = resolve_authorization_type(auth_type)
    if resolved is AuthorizationType.INSTITUTIONAL:
        return "ip"
    if resolved in (AuthorizationType.DENTAL, AuthorizationType.VISION):
        return "op"
    return _CLAIM_SUBTYPES.get((encounter_class or "").strip().lower(), "op")


# =============================================================================
# Display Tables
# =============================================================================


COVERAGE_TYPE_DISPLAYS = {
    "EHCPOL": "Extended healthcare",
    "PUBLICPOL": "Public healthcare",
    "DENTAL": "Dental",
    "VISION": "Vision",
    "MENTPRG": "Mental health program",
}

RELATIONSHIP_DISPLAYS = {
    "self": "Self",
    "spouse": "Spouse",
    "child": "Child",
    "parent": "Parent",
    "common": "Common Law Spouse",
    "other": "Other",
    "injured": "Injured Party",
}

SERVICE_TYPE_DISPLAYS = {
    "acute-care": "Acute Care",
    "sub-acute-care": "Sub-Acute Care",
    "rehabilitation": "Rehabilitation",
    "mental-behavioral": "Mental & Behavioral",
    "geriatric-care": "Geriatric Care",
    "newborn": "Newborn",
    "family-planning": "Family Planning",
    "dental-care": "Dental Care",
    "palliative-care": "Palliative Care",
    "others": "Others",
    "unknown": "Unknown",
}

ADMIT_SOURCE_DISPLAYS = {
    "IA": "Immediate Admission",
    "EPH": "Emergency Admission by referral from private hospital",
    "EER": "Admission from hospital ER",
    "EWIS": "Elective waiting list admission insurance coverage Scheme",
    "EPPHC": "Emergency Admission by referral from private primary healthcare center",
    "EOP": "Emergency Admission from hospital outpatient",
    "PMBA": "Planned Maternity Birth Admission",
    "EGGH": "Emergency Admission by referral from general government hospital",
    "PVAMB": "Private ambulance",
    "WKIN": "Walk-in",
    "EMBA": "Emergency Maternity Birth Admission",
    "EWSS": "Elective waiting list admission self-payment Scheme",
    "Others": "Others",
    "EWGS": "Elective waiting list admission government free Scheme",
    "EIC": "Emergency Admission by insurance company",
    "EGPHC": "Emergency Admission by referral from government primary healthcare center",
    "FMLYM": "Family member",
    "AA": "Already admitted",
    "RECR": "Red crescent",
    "AAIC": "Already admitted- insurance consumed",
}

PRACTITIONER_IDENTIFIER_TYPE_DISPLAYS = {
    "MD": "Medical License Number",
    "NPI": "National Provider Identifier",
    "PRN": "Provider Number",
    "TAX": "Tax ID Number",
    "DN": "Doctor Number",
    "NIIP": "National Insurance Payor Identifier",
}

BODY_SITE_DISPLAYS = {
    "RIV": "Right eye",
    "LIV": "Left eye",
    "E3": "Upper right, eyelid",
    "E4": "Lower right, eyelid",
    "FA": "Left hand, thumb",
    "F1": "Left hand, second digit",
    "F2": "Left hand, third digit",
    "F3": "Left hand, fourth digit",
    "F4": "Left hand, fifth digit",
    "F5": "Right hand, thumb",
    "F6": "Right hand, second digit",
    "F7": "Right hand, third digit",
    "F8": "Right hand, fourth digit",
    "F9": "Right hand, fifth digit",
    "TA": "Left foot, great toe",
    "T1": "Left foot, second digit",
    "T2": "Left foot, third digit",
    "T3": "Left foot, fourth digit",
    "T4": "Left foot, fifth digit",
    "T5": "Right foot, great toe",
    "T6": "Right foot, second digit",
    "T7": "Right foot, third digit",
    "T8": "Right foot, fourth digit",
    "T9": "Right foot, fifth digit",
    "LC": "Left circumflex coronary artery",
    "LD": "Left anterior descending coronary artery",
    "LM": "Left main coronary artery",
    "RC": "Right coronary artery",
    "RI": "Ramus intermedius coronary artery",
    "LT": "Left side",
    "RT": "Right side",
}

# Specialty-level practice codes
PRACTICE_CODE_DISPLAYS = {
    "01.00": "Anesthesiology Specialty",
    "02.00": "Community Medicine Specialty",
    "03.00": "Dermatology Specialty",
    "04.00": "Emergency Medicine Specialty",
    "05.00": "Ear, Nose & Throat Specialty",
    "06.00": "Family Medicine Specialty",
    "07.00": "Forensic Medicine Specialty",
    "08.00": "Internal Medicine Specialty",
    "08.02": "Cardiology",
    "08.04": "Endocrinology",
    "08.18": "Neurology",
    "08.26": "General Medicine",
    "09.00": "Microbiology Specialty",
    "10.00": "Obstetrics & Gynecology Specialty",
    "11.00": "Ophthalmology Specialty",
    "12.00": "Orthopedic Specialty",
    "13.00": "Pathology Specialty",
    "14.00": "Pediatric Specialty",
    "15.00": "Pediatrics Surgery Specialty",
    "16.00": "Physical Medicine & Rehabilitation Specialty",
    "17.00": "Psychiatry Specialty",
    "18.00": "Radiology Specialty",
    "19.00": "Surgery Specialty",
    "20.00": "Urology Specialty",
    "21.00": "Critical Care",
    "22.00": "Dental",
    "23.00": "Neurophysiology",
    "24.00": "Speech/Speech Language Pathology",
    "25.00": "Infection Control",
}

TRIAGE_CATEGORY_DISPLAYS = {
    "I": "Immediate",
    "VU": "Very Urgent",
    "U": "Urgent",
    "S": "Standard",
    "NS": "Non-Standard",
}

SERVICE_EVENT_TYPE_DISPLAYS = {
    "ICSE": "Initial client service event",
    "SCSE": "Subsequent client service event",
}

ENCOUNTER_PRIORITY_DISPLAYS = {
    "A": "ASAP",
    "EL": "elective",
    "EM": "emergency",
    "P": "preop",
    "PRN": "as needed",
    "R": "routine",
    "S": "stat",
    "T": "timing critical",
    "UR": "urgent",
}

TOOTH_SURFACE_DISPLAYS = {
    "M": "Mesial",
    "O": "Occlusal",
    "I": "Incisal",
    "D": "Distal",
    "B": "Buccal",
    "V": "Ventral",
    "L": "Lingual",
    "F": "Facial",
    "MO": "Mesioclusal",
    "DO": "Distoclusal",
    "DI": "Distoincisal",
    "MOD": "Mesioclusodistal",
}

PHARMACIST_SUBSTITUTE_DISPLAYS = {
    "form-not-available": "Dosage form not available",
    "Others": "Others : specify",
    "Irreplaceable": "SFDA Irreplaceable drugs",
    "strength-not-available": "Strength not available at pharmacy store",
}

# FDI quadrant digit -> (side, dentition)
_FDI_QUADRANTS = {
    "1": ("UPPER RIGHT", "PERMANENT"),
    "2": ("UPPER LEFT", "PERMANENT"),
    "3": ("LOWER LEFT", "PERMANENT"),
    "4": ("LOWER RIGHT", "PERMANENT"),
    "5": ("UPPER RIGHT", "DECIDUOUS"),
    "6": ("UPPER LEFT", "DECIDUOUS"),
    "7": ("LOWER LEFT", "DECIDUOUS"),
    "8": ("LOWER RIGHT", "DECIDUOUS"),
}


def coverage_type_display(code: Optional[str]) -> Optional[str]:
    return COVERAGE_TYPE_DISPLAYS.get(code or "", code)


def relationship_display(code: Optional[str]) -> Optional[str]:
    return RELATIONSHIP_DISPLAYS.get(code or "", code)


def service_type_display(code: Optional[str]) -> Optional[str]:
    return SERVICE_TYPE_DISPLAYS.get(code or "", code)


def admit_source_display(code: Optional[str]) -> Optional[str]:
    return ADMIT_SOURCE_DISPLAYS.get(code or "", code)


def practitioner_identifier_type_display(code: Optional[str]) -> str:
    return PRACTITIONER_IDENTIFIER_TYPE_DISPLAYS.get(code or "", "License Number")


def body_site_display(code: Optional[str]) -> Optional[str]:
    return BODY_SITE_DISPLAYS.get(code or "", code)


def practice_code_display(code: Optional[str]) -> str:
    return PRACTICE_CODE_DISPLAYS.get(code or "", "Healthcare Professional")


def triage_category_display(code: Optional[str]) -> Optional[str]:
    return TRIAGE_CATEGORY_DISPLAYS.get(code or "", code)


def service_event_type_display(code: Optional[str]) -> Optional[str]:
    return SERVICE_EVENT_TYPE_DISPLAYS.get(code or "", code)


def encounter_priority_display(code: Optional[str]) -> Optional[str]:
    return ENCOUNTER_PRIORITY_DISPLAYS.get(code or "", code)


def tooth_surface_display(code: Optional[str]) -> Optional[str]:
    return TOOTH_SURFACE_DISPLAYS.get((code or "").upper(), code)


def pharmacist_substitute_display(code: Optional[str]) -> Optional[str]:
    return PHARMACIST_SUBSTITUTE_DISPLAYS.get(code or "", code)


def tooth_display(tooth_number: Optional[str]) -> Optional[str]:
    """
    FDI two-digit tooth number display.

    Example:
        >>> tooth_display("36")
        'LOWER LEFT; PERMANENT TEETH # 6'
    """
    tooth = str(tooth_number or "").strip()
    if len(tooth) != 2 or tooth[0] not in _FDI_QUADRANTS or not tooth[1].isdigit():
        return tooth_number
    side, dentition = _FDI_QUADRANTS[tooth[0]]
    return f"{side}; {dentition} TEETH # {tooth[1]}"


# =============================================================================
# Units of Measure
# =============================================================================


# Keys are lowercase; lookup is case-insensitive
_UCUM_SYNONYMS: Dict[str, str] = {
    "mmhg": "mm[Hg]",
    "mm[hg]": "mm[Hg]",
    "cm": "cm",
    "centimeter": "cm",
    "centimeters": "cm",
    "m": "m",
    "meter": "m",
    "meters": "m",
    "kg": "kg",
    "kilogram": "kg",
    "kilograms": "kg",
    "g": "g",
    "gram": "g",
    "grams": "g",
    "/min": "/min",
    "per minute": "/min",
    "bpm": "/min",
    "beats per minute": "/min",
    "breaths per minute": "/min",
    "cel": "Cel",
    "celsius": "Cel",
    "°c": "Cel",
    "c": "Cel",
    "%": "%",
    "percent": "%",
    "d": "d",
    "day": "d",
    "days": "d",
    "h": "h",
    "hour": "h",
    "hours": "h",
    "ml": "mL",
    "milliliter": "mL",
    "l": "L",
    "liter": "L",
}


def normalize_unit(unit: Optional[str]) -> str:
    """
    Normalize a unit of measure to its UCUM code.

    Unknown units are returned unchanged; empty input gives "".
    """
    if not unit:
        return ""
    return _UCUM_SYNONYMS.get(unit.strip().lower(), unit)


# =============================================================================
# Supporting Info
# =============================================================================


_SUPPORTING_INFO_CATEGORIES: Dict[str, str] = {
    "vital-sign-systolic": "vital-sign-systolic",
    "vital-sign-diastolic": "vital-sign-diastolic",
    "vital-sign-height": "vital-sign-height",
    "vital-sign-weight": "vital-sign-weight",
    "pulse": "pulse",
    "temperature": "temperature",
    "oxygen-saturation": "oxygen-saturation",
    "respiratory-rate": "respiratory-rate",
    "admission-weight": "admission-weight",
    "estimated-length-of-stay": "estimated-Length-of-Stay",
    "hospitalized": "hospitalized",
    "icu-hours": "icu-hours",
    "ventilation-hours": "ventilation-hours",
    "chief-complaint": "chief-complaint",
    "patient-history": "patient-history",
    "investigation-result": "investigation-result",
    "treatment-plan": "treatment-plan",
    "physical-examination": "physical-examination",
    "history-of-present-illness": "history-of-present-illness",
    "reason-for-visit": "reason-for-visit",
    "missingtooth": "missingtooth",
    "missing-tooth": "missingtooth",
    "last-menstrual-period": "last-menstrual-period",
    "birth-weight": "birth-weight",
    "onset": "onset",
    "attachment": "attachment",
    "days-supply": "days-supply",
    "days_supply": "days-supply",
    "info": "info",
    "lab-test": "lab-test",
    "morphology": "morphology",
    "employmentimpacted": "employmentImpacted",
    "employment-impacted": "employmentImpacted",
    "prosthesis": "prosthesis",
    "radiology": "radiology",
    "discharge": "discharge",
}

_SUPPORTING_INFO_CODE_SYSTEMS: Dict[str, str] = {
    "chief-complaint": SNOMED_SYSTEM,
    "onset": SNOMED_SYSTEM,
    "hospitalized": SNOMED_SYSTEM,
    "investigation-result": nphies_system("investigation-result"),
}


def supporting_info_category(category: Optional[str]) -> str:
    """NPHIES claim-information-category code; unknown input passes through."""
    return _SUPPORTING_INFO_CATEGORIES.get((category or "").strip().lower(), category or "")


def supporting_info_code_system(category: Optional[str]) -> str:
    return _SUPPORTING_INFO_CODE_SYSTEMS.get(
        category or "", nphies_system("supporting-info-code")
    )


# =============================================================================
# Cancellation Reasons
# =============================================================================


CANCEL_REASONS: Dict[str, Tuple[str, str]] = {
    "wi": ("WI", "wrong information"),
    "np": ("NP", "service not performed"),
    "tas": ("TAS", "transaction already submitted"),
    "su": ("SU", "Product/Service is unavailable"),
    "resubmission": ("resubmission", "Claim Re-submission."),
}

# Checked in order; first keyword hit wins
_CANCEL_KEYWORDS = (
    (("wrong", "incorrect", "error"), "wi"),
    (("not performed", "not done", "cancelled"), "np"),
    (("already", "duplicate", "submitted"), "tas"),
    (("unavailable", "not available"), "su"),
    (("resubmit", "re-submit"), "resubmission"),
)


def cancel_reason(reason: Optional[str]) -> Tuple[str, str]:
    """
    Map a cancellation reason (code or free text) to a task-reason code.

    Returns (code, display); defaults to NP "service not performed".
    """
    text = (reason or "").strip().lower()
    if text in CANCEL_REASONS:
        return CANCEL_REASONS[text]
    for keywords, key in _CANCEL_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return CANCEL_REASONS[key]
    return CANCEL_REASONS["np"]
