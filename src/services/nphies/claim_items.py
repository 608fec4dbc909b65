"""
Claim Line Items and Supporting Info Composition.

Source: NPHIES FHIR Implementation Guide, Claim.supportingInfo and Claim.item
Verified: 2025-12-19

Supporting info is composed and sequenced first; items then link to it,
to the diagnoses and to the care team by sequence number.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import logging

from src.core.enums import AuthorizationType, ItemDetailKind
from src.schemas.prior_auth import AuthorizationRequest, LineItem, SupportingInfoEntry
from src.services.nphies import vocabulary
from src.services.nphies.fhir_base import (
    BODY_SITE_SYSTEM,
    CompositionError,
    FDI_ORAL_REGION_SYSTEM,
    FDI_TOOTH_SURFACE_SYSTEM,
    MEDICAL_DEVICES_SYSTEM,
    MEDICATION_CODES_SYSTEM,
    ORAL_HEALTH_OP_SYSTEM,
    PHARMACIST_SELECTION_REASON_SYSTEM,
    PHARMACIST_SUBSTITUTE_SYSTEM,
    PROCEDURES_SYSTEM,
    SNOMED_SYSTEM,
    SUPPORTING_INFO_CATEGORY_SYSTEM,
    SUPPORTING_INFO_REASON_SYSTEM,
    UCUM_SYSTEM,
    codeable_concept,
    coding,
    extension,
    format_fhir_date,
    format_fhir_instant,
    money,
    ordered_resource,
    to_decimal,
    to_fhir_decimal,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Supporting Info Values
# =============================================================================


class ValueKind(str, Enum):
    """Supporting info value[x] shapes, in selection priority order."""

    STRING = "valueString"
    QUANTITY = "valueQuantity"
    BOOLEAN = "valueBoolean"
    DATE = "valueDate"
    PERIOD = "valuePeriod"
    REFERENCE = "valueReference"


@dataclass(frozen=True)
class SupportingInfoValue:
    """Tagged value: one kind plus its already-rendered payload."""

    kind: ValueKind
    payload: Any

    def as_pair(self) -> Tuple[str, Any]:
        return self.kind.value, self.payload


def select_supporting_info_value(
    entry: SupportingInfoEntry,
    string_consumed: bool = False,
) -> Optional[SupportingInfoValue]:
    """
    Pick the value shape for a supporting info entry.

    First populated source field wins: string, quantity, boolean, date,
    period, reference. ``string_consumed`` skips value_string when it was
    already used as the chief complaint text.
    """
    if entry.value_string is not None and not string_consumed:
        return SupportingInfoValue(ValueKind.STRING, entry.value_string)
    if entry.value_quantity is not None:
        return SupportingInfoValue(
            ValueKind.QUANTITY,
            quantity(entry.value_quantity, entry.value_quantity_unit),
        )
    if entry.value_boolean is not None:
        return SupportingInfoValue(ValueKind.BOOLEAN, entry.value_boolean)
    if entry.value_date is not None:
        return SupportingInfoValue(ValueKind.DATE, format_fhir_date(entry.value_date))
    if entry.value_period_start is not None:
        period = ordered_resource([
            ("start", format_fhir_instant(entry.value_period_start)),
            ("end", format_fhir_instant(entry.value_period_end) if entry.value_period_end else None),
        ])
        return SupportingInfoValue(ValueKind.PERIOD, period)
    if entry.value_reference:
        return SupportingInfoValue(ValueKind.REFERENCE, {"reference": entry.value_reference})
    return None


def quantity(value: Decimal, unit: Optional[str]) -> Dict[str, Any]:
    """UCUM Quantity with the unit normalized."""
    code = vocabulary.normalize_unit(unit)
    return ordered_resource([
        ("value", to_fhir_decimal(Decimal(value), places=4)),
        ("unit", code or None),
        ("system", UCUM_SYSTEM),
        ("code", code or None),
    ])


# =============================================================================
# Supporting Info Composition
# =============================================================================


@dataclass
class SupportingInfoSet:
    """Sequenced supporting info entries for one claim."""

    entries: List[Dict[str, Any]] = field(default_factory=list)
    days_supply: Dict[int, int] = field(default_factory=dict)  # sequence -> days
    renumbered: Dict[int, int] = field(default_factory=dict)  # stored sequence -> sequence

    @property
    def sequences(self) -> List[int]:
        return [entry["sequence"] for entry in self.entries]


def _category_of(entry: SupportingInfoEntry) -> str:
    return vocabulary.supporting_info_category(entry.category)


def build_supporting_info(entry: SupportingInfoEntry, sequence: int) -> Dict[str, Any]:
    """Render one supporting info entry with the given sequence."""
    category = _category_of(entry)
    code = None
    string_consumed = False

    if category == "chief-complaint":
        has_text = bool(entry.code_text and entry.code_text.strip())
        has_code = bool(entry.code and entry.code.strip())
        has_string = bool(entry.value_string and entry.value_string.strip())
        if has_text or (has_string and not has_code):
            code = {"text": entry.code_text if has_text else entry.value_string}
            string_consumed = not has_text
        elif has_code:
            code = codeable_concept(
                entry.code_system or SNOMED_SYSTEM, entry.code, entry.code_display
            )
        else:
            code = {"text": "Chief complaint"}
    elif entry.code:
        code = codeable_concept(
            entry.code_system or vocabulary.supporting_info_code_system(category),
            entry.code,
            entry.code_display,
        )

    timing_pair: Tuple[str, Any] = ("timingDate", None)
    if entry.timing_period_start is not None:
        timing_pair = ("timingPeriod", {
            "start": format_fhir_instant(entry.timing_period_start),
            "end": format_fhir_instant(entry.timing_period_end or entry.timing_period_start),
        })
    elif entry.timing_date is not None:
        timing_pair = ("timingDate", format_fhir_date(entry.timing_date))

    value = select_supporting_info_value(entry, string_consumed=string_consumed)
    value_pair = value.as_pair() if value else ("valueString", None)

    reason = None
    if entry.reason_code:
        reason = codeable_concept(SUPPORTING_INFO_REASON_SYSTEM, entry.reason_code)

    return ordered_resource([
        ("sequence", sequence),
        ("category", codeable_concept(SUPPORTING_INFO_CATEGORY_SYSTEM, category)),
        ("code", code),
        timing_pair,
        value_pair,
        ("reason", reason),
    ])


def _required_supporting_info(
    request: AuthorizationRequest,
    auth_type: AuthorizationType,
    present: set,
) -> Tuple[List[SupportingInfoEntry], List[SupportingInfoEntry]]:
    """Entries NPHIES requires per type: (prepend, append)."""
    prepend: List[SupportingInfoEntry] = []
    append: List[SupportingInfoEntry] = []
    request_day = (request.request_date or datetime.now()).date()

    if auth_type in (
        AuthorizationType.PROFESSIONAL,
        AuthorizationType.INSTITUTIONAL,
        AuthorizationType.DENTAL,
    ) and "chief-complaint" not in present:
        if request.chief_complaint:
            prepend.append(SupportingInfoEntry(
                category="chief-complaint", code_text=request.chief_complaint
            ))
        elif auth_type is AuthorizationType.INSTITUTIONAL:
            prepend.append(SupportingInfoEntry(
                category="chief-complaint",
                code="418799008",
                code_display="General symptom",
                code_system=SNOMED_SYSTEM,
                timing_date=request_day,
            ))
        else:
            prepend.append(SupportingInfoEntry(
                category="chief-complaint", code_text="Patient presenting for evaluation"
            ))

    if auth_type is AuthorizationType.INSTITUTIONAL and "estimated-Length-of-Stay" not in present:
        append.append(SupportingInfoEntry(
            category="estimated-Length-of-Stay",
            value_quantity=Decimal(request.estimated_length_of_stay or 1),
            value_quantity_unit="d",
            timing_date=request_day,
        ))

    if request.is_newborn and request.birth_weight and "birth-weight" not in present:
        # Recorded in grams, sent in kg
        append.append(SupportingInfoEntry(
            category="birth-weight",
            value_quantity=Decimal(request.birth_weight) / Decimal(1000),
            value_quantity_unit="kg",
        ))

    if auth_type is AuthorizationType.PHARMACY and "days-supply" not in present:
        first_item_days = next((item.days_supply for item in request.items if item.days_supply), None)
        append.append(SupportingInfoEntry(
            category="days-supply",
            value_quantity=Decimal(first_item_days or request.days_supply or 30),
            value_quantity_unit="d",
            timing_date=request_day,
        ))

    return prepend, append


def compose_supporting_info(
    request: AuthorizationRequest,
    auth_type: AuthorizationType,
) -> SupportingInfoSet:
    """
    Build and sequence all supporting info for a request.

    Source entries keep their relative order (by their stored sequence) and
    are renumbered 1..n so sequences are unique. An entry without a stored
    sequence is known by its 1-based position in the request.
    """
    keyed = sorted(
        (
            (entry.sequence if entry.sequence is not None else position, entry)
            for position, entry in enumerate(request.supporting_info, start=1)
        ),
        key=lambda pair: pair[1].sequence if pair[1].sequence is not None else 10**6,
    )
    source = [entry for _, entry in keyed]
    present = {_category_of(entry) for entry in source}
    prepend, append = _required_supporting_info(request, auth_type, present)

    result = SupportingInfoSet()
    for offset, (key, _) in enumerate(keyed, start=len(prepend) + 1):
        result.renumbered.setdefault(key, offset)
    for sequence, entry in enumerate(prepend + source + append, start=1):
        rendered = build_supporting_info(entry, sequence)
        if _category_of(entry) == "days-supply" and entry.value_quantity is not None:
            result.days_supply[sequence] = int(entry.value_quantity)
        result.entries.append(rendered)
    return result


# =============================================================================
# Item Detail Variants
# =============================================================================


@dataclass(frozen=True)
class BodySiteDetail:
    kind = ItemDetailKind.BODY_SITE
    code: str


@dataclass(frozen=True)
class DentalDetail:
    kind = ItemDetailKind.DENTAL
    tooth_number: str
    surfaces: Tuple[str, ...] = ()


@dataclass(frozen=True)
class VisionDetail:
    kind = ItemDetailKind.VISION
    eye: str  # RIV / LIV


@dataclass(frozen=True)
class PharmacyDetail:
    kind = ItemDetailKind.PHARMACY
    code: str
    display: Optional[str]
    is_device: bool
    prescribed_code: Optional[str]
    selection_reason: str
    substitute: Optional[str]
    procedure_code: Optional[str]
    procedure_system: Optional[str]
    days_supply: Optional[int]


ItemDetail = Union[BodySiteDetail, DentalDetail, VisionDetail, PharmacyDetail]

_EYE_CODES = {"right": "RIV", "r": "RIV", "riv": "RIV", "left": "LIV", "l": "LIV", "liv": "LIV"}


def item_detail_for(auth_type: AuthorizationType, item: LineItem) -> Optional[ItemDetail]:
    """Select the detail payload an item carries for its authorization type."""
    if auth_type is AuthorizationType.DENTAL:
        if not item.tooth_number:
            return None
        surfaces = tuple(
            part.strip().upper() for part in (item.tooth_surface or "").split(",") if part.strip()
        )
        return DentalDetail(tooth_number=str(item.tooth_number).strip(), surfaces=surfaces)

    if auth_type is AuthorizationType.VISION:
        if not item.eye:
            return None
        eye = _EYE_CODES.get(item.eye.strip().lower())
        if eye is None:
            logger.warning(f"Unrecognized eye side {item.eye!r} on item {item.sequence}")
            eye = item.eye.strip()
        return VisionDetail(eye=eye)

    if auth_type is AuthorizationType.PHARMACY:
        is_device = item.item_type.strip().lower() == "device"
        code = (item.medication_code or "").strip() or (item.product_or_service_code or "").strip()
        if not code:
            raise CompositionError(
                f"Pharmacy item has no {'device' if is_device else 'medication'} code",
                resource_type="Claim",
                field_name=f"item[{item.sequence}].medication_code",
            )
        procedure_code = (item.product_or_service_code or "").strip() or None
        if procedure_code == code:
            procedure_code = None
        return PharmacyDetail(
            code=code,
            display=item.medication_name or item.product_or_service_display,
            is_device=is_device,
            prescribed_code=(item.prescribed_medication_code or "").strip() or None,
            selection_reason=item.pharmacist_selection_reason or "patient-request",
            substitute=(item.pharmacist_substitute or "").strip() or None,
            procedure_code=procedure_code,
            procedure_system=item.product_or_service_system,
            days_supply=item.days_supply,
        )

    if item.body_site:
        return BodySiteDetail(code=item.body_site.strip())
    return None


# =============================================================================
# Item Amounts
# =============================================================================


@dataclass(frozen=True)
class ItemAmounts:
    quantity: Decimal
    unit_price: Decimal
    factor: Decimal
    tax: Decimal
    net: Decimal
    patient_share: Decimal
    payer_share: Decimal


def compute_item_amounts(item: LineItem) -> ItemAmounts:
    """
    Derive net and payer share.

    net = quantity * unit_price * factor + tax, unless supplied.
    payer_share = net - patient_share, unless supplied. A supplied payer
    share that disagrees with net and patient share is kept as given and
    logged.
    """
    qty = to_decimal(item.quantity, Decimal(1))
    unit_price = to_decimal(item.unit_price, Decimal(0))
    factor = to_decimal(item.factor, Decimal(1))
    tax = to_decimal(item.tax, Decimal(0))
    patient_share = to_decimal(item.patient_share, Decimal(0))

    net = to_decimal(item.net_amount)
    if net is None:
        net = qty * unit_price * factor + tax

    payer_share = to_decimal(item.payer_share)
    if payer_share is None:
        payer_share = net - patient_share
    elif payer_share != net - patient_share:
        logger.warning(
            f"Item {item.sequence}: payer share {payer_share} != net {net} - patient share "
            f"{patient_share}; sending payer share as supplied"
        )

    return ItemAmounts(
        quantity=qty,
        unit_price=unit_price,
        factor=factor,
        tax=tax,
        net=net,
        patient_share=patient_share,
        payer_share=payer_share,
    )


# =============================================================================
# Item Composition
# =============================================================================


@dataclass
class ItemContext:
    """Everything items link to, fixed before any item is built."""

    auth_type: AuthorizationType
    currency: str
    supporting_info: SupportingInfoSet
    diagnosis_sequences: Sequence[int]
    principal_diagnosis: Optional[int]
    care_team_sequences: Sequence[int]
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


@dataclass
class ComposedItems:
    entries: List[Dict[str, Any]] = field(default_factory=list)
    total_net: Decimal = Decimal(0)


def _diagnosis_links(item: LineItem, ctx: ItemContext) -> Optional[List[int]]:
    if not ctx.diagnosis_sequences:
        return None
    known = set(ctx.diagnosis_sequences)
    requested = item.diagnosis_sequences or []
    links = [seq for seq in requested if seq in known]
    dropped = [seq for seq in requested if seq not in known]
    if dropped:
        logger.warning(f"Item {item.sequence}: unknown diagnosis sequences {dropped} dropped")
    return links or [ctx.principal_diagnosis or ctx.diagnosis_sequences[0]]


def _information_links(
    item: LineItem, detail: Optional[ItemDetail], ctx: ItemContext
) -> Optional[List[int]]:
    known = ctx.supporting_info.sequences
    if item.information_sequences:
        renumbered = ctx.supporting_info.renumbered
        links = [renumbered[seq] for seq in item.information_sequences if seq in renumbered]
        dropped = [seq for seq in item.information_sequences if seq not in renumbered]
        if dropped:
            logger.warning(f"Item {item.sequence}: unknown supporting info sequences {dropped} dropped")
        if links:
            return links

    if isinstance(detail, PharmacyDetail):
        if detail.is_device:
            return None
        days = ctx.supporting_info.days_supply
        matching = [seq for seq, value in days.items() if value == detail.days_supply]
        if matching:
            return matching
        return [min(days)] if days else None

    return list(known) or None


def _serviced_date(item: LineItem, ctx: ItemContext) -> str:
    """Item date, clamped into the encounter period."""
    served: date = item.serviced_date or (
        ctx.period_start.date() if ctx.period_start else date.today()
    )
    if ctx.period_start and served < ctx.period_start.date():
        served = ctx.period_start.date()
    if ctx.period_end and served > ctx.period_end.date():
        served = ctx.period_end.date()
    return format_fhir_date(served)


def _product_or_service(
    item: LineItem, detail: Optional[ItemDetail], auth_type: AuthorizationType
) -> Dict[str, Any]:
    if isinstance(detail, PharmacyDetail):
        system = MEDICAL_DEVICES_SYSTEM if detail.is_device else MEDICATION_CODES_SYSTEM
        codings = [coding(system, detail.code, detail.display)]
        if detail.procedure_code:
            codings.append(coding(detail.procedure_system or PROCEDURES_SYSTEM, detail.procedure_code))
        return {"coding": codings}

    if not item.product_or_service_code:
        raise CompositionError(
            "Item has no product or service code",
            resource_type="Claim",
            field_name=f"item[{item.sequence}].product_or_service_code",
        )
    default_system = ORAL_HEALTH_OP_SYSTEM if auth_type is AuthorizationType.DENTAL else PROCEDURES_SYSTEM
    return codeable_concept(
        item.product_or_service_system or default_system,
        item.product_or_service_code,
        item.product_or_service_display,
    )


def _item_extensions(
    item: LineItem, amounts: ItemAmounts, detail: Optional[ItemDetail], currency: str
) -> List[Dict[str, Any]]:
    extensions = [
        extension("package", valueBoolean=item.is_package),
        extension("tax", valueMoney=money(amounts.tax, currency)),
        extension("patient-share", valueMoney=money(amounts.patient_share, currency)),
        extension("payer-share", valueMoney=money(amounts.payer_share, currency)),
    ]
    if isinstance(detail, PharmacyDetail) and not detail.is_device:
        extensions.append(extension(
            "prescribed-Medication",
            valueCodeableConcept=codeable_concept(
                MEDICATION_CODES_SYSTEM, detail.prescribed_code or detail.code
            ),
        ))
        extensions.append(extension(
            "pharmacist-Selection-Reason",
            valueCodeableConcept=codeable_concept(
                PHARMACIST_SELECTION_REASON_SYSTEM, detail.selection_reason
            ),
        ))
        if detail.substitute:
            extensions.append(extension(
                "pharmacist-substitute",
                valueCodeableConcept=codeable_concept(
                    PHARMACIST_SUBSTITUTE_SYSTEM,
                    detail.substitute,
                    vocabulary.pharmacist_substitute_display(detail.substitute),
                ),
            ))
    extensions.append(extension("maternity", valueBoolean=item.is_maternity))
    return extensions


def _sites(detail: Optional[ItemDetail]) -> Tuple[Optional[Dict[str, Any]], Optional[List[Dict[str, Any]]]]:
    """bodySite and subSite for the item's detail payload."""
    if isinstance(detail, DentalDetail):
        body_site = codeable_concept(
            FDI_ORAL_REGION_SYSTEM,
            detail.tooth_number,
            vocabulary.tooth_display(detail.tooth_number),
        )
        sub_site = [
            codeable_concept(FDI_TOOTH_SURFACE_SYSTEM, surface, vocabulary.tooth_surface_display(surface))
            for surface in detail.surfaces
        ]
        return body_site, sub_site or None
    if isinstance(detail, VisionDetail):
        return codeable_concept(BODY_SITE_SYSTEM, detail.eye, vocabulary.body_site_display(detail.eye)), None
    if isinstance(detail, BodySiteDetail):
        return codeable_concept(BODY_SITE_SYSTEM, detail.code, vocabulary.body_site_display(detail.code)), None
    return None, None


def build_item(item: LineItem, sequence: int, ctx: ItemContext) -> Tuple[Dict[str, Any], ItemAmounts, Optional[ItemDetail]]:
    """Render one Claim.item."""
    item = item.model_copy(update={"sequence": sequence})
    detail = item_detail_for(ctx.auth_type, item)
    amounts = compute_item_amounts(item)
    currency = item.currency or ctx.currency
    body_site, sub_site = _sites(detail)

    factor = to_fhir_decimal(amounts.factor, places=4) if amounts.factor != 1 else None

    rendered = ordered_resource([
        ("extension", _item_extensions(item, amounts, detail, currency)),
        ("sequence", sequence),
        ("careTeamSequence", list(ctx.care_team_sequences) or None),
        ("diagnosisSequence", _diagnosis_links(item, ctx)),
        ("informationSequence", _information_links(item, detail, ctx)),
        ("productOrService", _product_or_service(item, detail, ctx.auth_type)),
        ("servicedDate", _serviced_date(item, ctx)),
        ("quantity", {"value": to_fhir_decimal(amounts.quantity, places=4)}),
        ("unitPrice", money(amounts.unit_price, currency)),
        ("factor", factor),
        ("net", money(amounts.net, currency)),
        ("bodySite", body_site),
        ("subSite", sub_site),
    ])
    return rendered, amounts, detail


def compose_items(request: AuthorizationRequest, ctx: ItemContext) -> ComposedItems:
    """
    Build every Claim.item for a request.

    Items are numbered 1..n in the order given.
    """
    composed = ComposedItems()
    for sequence, item in enumerate(request.items, start=1):
        if item.sequence is not None and item.sequence != sequence:
            logger.debug(f"Item sequence {item.sequence} renumbered to {sequence}")
        rendered, amounts, _ = build_item(item, sequence, ctx)
        composed.entries.append(rendered)
        composed.total_net += amounts.net
    return composed
