"""
Unit Tests for Claim Items and Supporting Info.

Source: NPHIES FHIR Implementation Guide, Claim.supportingInfo and Claim.item
Verified: 2025-12-19

Tests:
- Supporting info value selection and required entries
- Item detail variants per authorization type
- Amount derivation
- Sequence linking
"""

import logging
from datetime import date, datetime
from decimal import Decimal

import pytest

from src.core.enums import AuthorizationType
from src.schemas.prior_auth import AuthorizationRequest, LineItem, SupportingInfoEntry
from src.services.nphies.claim_items import (
    BodySiteDetail,
    DentalDetail,
    ItemContext,
    PharmacyDetail,
    SupportingInfoSet,
    ValueKind,
    VisionDetail,
    build_item,
    build_supporting_info,
    compose_items,
    compose_supporting_info,
    compute_item_amounts,
    item_detail_for,
    select_supporting_info_value,
)
from src.services.nphies.fhir_base import CompositionError, SNOMED_SYSTEM, UCUM_SYSTEM


def item_context(auth_type=AuthorizationType.PROFESSIONAL, supporting=None, diagnoses=(1,), **kwargs):
    return ItemContext(
        auth_type=auth_type,
        currency="SAR",
        supporting_info=supporting or SupportingInfoSet(),
        diagnosis_sequences=list(diagnoses),
        principal_diagnosis=diagnoses[0] if diagnoses else None,
        care_team_sequences=[1],
        **kwargs,
    )


def extension_value(element, suffix):
    for ext in element["extension"]:
        if ext["url"].endswith(suffix):
            return ext
    raise AssertionError(f"extension {suffix} not found")


# =============================================================================
# Supporting Info Tests
# =============================================================================


class TestSupportingInfoValue:
    """Test tagged value selection."""

    def test_string_wins_over_quantity(self):
        """Test value_string has the highest priority."""
        entry = SupportingInfoEntry(category="info", value_string="note", value_quantity=Decimal("3"))
        assert select_supporting_info_value(entry).kind is ValueKind.STRING

    def test_quantity_normalizes_unit(self):
        """Test quantities carry a UCUM-normalized unit."""
        entry = SupportingInfoEntry(
            category="vital-sign-systolic", value_quantity=Decimal("120"), value_quantity_unit="mmHg"
        )
        value = select_supporting_info_value(entry)
        assert value.kind is ValueKind.QUANTITY
        assert value.payload == {"value": 120, "unit": "mm[Hg]", "system": UCUM_SYSTEM, "code": "mm[Hg]"}

    def test_consumed_string_falls_through(self):
        """Test a consumed string lets the next populated value win."""
        entry = SupportingInfoEntry(category="info", value_string="x", value_boolean=False)
        value = select_supporting_info_value(entry, string_consumed=True)
        assert value.as_pair() == ("valueBoolean", False)

    def test_no_value(self):
        """Test entries with no value fields yield None."""
        assert select_supporting_info_value(SupportingInfoEntry(category="info")) is None


class TestBuildSupportingInfo:
    """Test rendering of single supporting info entries."""

    def test_chief_complaint_from_value_string(self):
        """Test a chief complaint without code uses its string as code text."""
        entry = SupportingInfoEntry(category="chief-complaint", value_string="Headache")
        rendered = build_supporting_info(entry, 1)
        assert rendered["code"] == {"text": "Headache"}
        assert "valueString" not in rendered

    def test_chief_complaint_snomed_code(self):
        """Test coded chief complaints use SNOMED."""
        entry = SupportingInfoEntry(category="chief-complaint", code="25064002", code_display="Headache")
        rendered = build_supporting_info(entry, 2)
        assert rendered["code"]["coding"][0]["system"] == SNOMED_SYSTEM

    def test_field_order(self):
        """Test sequence, category, code, timing, value, reason ordering."""
        entry = SupportingInfoEntry(
            category="lab-test",
            code="LAB1",
            timing_date=date(2025, 6, 1),
            value_string="positive",
            reason_code="missing-info",
        )
        rendered = build_supporting_info(entry, 3)
        assert list(rendered) == ["sequence", "category", "code", "timingDate", "valueString", "reason"]


class TestComposeSupportingInfo:
    """Test required entries and sequencing."""

    def test_professional_gets_chief_complaint_first(self):
        """Test a default chief complaint is prepended."""
        request = AuthorizationRequest(
            auth_type="professional",
            supporting_info=[SupportingInfoEntry(sequence=5, category="pulse", value_quantity=Decimal("80"))],
        )
        result = compose_supporting_info(request, AuthorizationType.PROFESSIONAL)
        assert result.sequences == [1, 2]
        assert result.entries[0]["category"]["coding"][0]["code"] == "chief-complaint"
        assert result.entries[0]["code"] == {"text": "Patient presenting for evaluation"}

    def test_institutional_required_entries(self):
        """Test institutional requests get chief complaint and length of stay."""
        request = AuthorizationRequest(
            auth_type="institutional", estimated_length_of_stay=4, request_date=datetime(2025, 6, 1)
        )
        result = compose_supporting_info(request, AuthorizationType.INSTITUTIONAL)
        categories = [e["category"]["coding"][0]["code"] for e in result.entries]
        assert categories == ["chief-complaint", "estimated-Length-of-Stay"]
        assert result.entries[0]["code"]["coding"][0]["code"] == "418799008"
        assert result.entries[1]["valueQuantity"]["value"] == 4

    def test_pharmacy_days_supply_from_item(self):
        """Test pharmacy days supply comes from the first item that has one."""
        request = AuthorizationRequest(
            auth_type="pharmacy",
            items=[LineItem(medication_code="MED1"), LineItem(medication_code="MED2", days_supply=14)],
        )
        result = compose_supporting_info(request, AuthorizationType.PHARMACY)
        assert result.days_supply == {1: 14}

    def test_newborn_birth_weight_in_kg(self):
        """Test birth weight in grams is sent in kilograms."""
        request = AuthorizationRequest(auth_type="vision", is_newborn=True, birth_weight=Decimal("3250"))
        result = compose_supporting_info(request, AuthorizationType.VISION)
        quantity = result.entries[0]["valueQuantity"]
        assert quantity["value"] == 3.25
        assert quantity["code"] == "kg"

    def test_sequences_unique_after_renumbering(self):
        """Test duplicate stored sequences still produce 1..n."""
        request = AuthorizationRequest(
            auth_type="vision",
            supporting_info=[
                SupportingInfoEntry(sequence=1, category="info", value_string="a"),
                SupportingInfoEntry(sequence=1, category="info", value_string="b"),
            ],
        )
        result = compose_supporting_info(request, AuthorizationType.VISION)
        assert result.sequences == [1, 2]


# =============================================================================
# Item Detail Tests
# =============================================================================


class TestItemDetail:
    """Test closed detail variants."""

    def test_dental_detail(self):
        """Test dental items carry tooth and surfaces."""
        detail = item_detail_for(AuthorizationType.DENTAL, LineItem(tooth_number="36", tooth_surface="m, o"))
        assert detail == DentalDetail(tooth_number="36", surfaces=("M", "O"))

    @pytest.mark.parametrize("eye,expected", [("right", "RIV"), ("L", "LIV"), ("riv", "RIV")])
    def test_vision_detail(self, eye, expected):
        """Test eye sides map to body-site codes."""
        assert item_detail_for(AuthorizationType.VISION, LineItem(eye=eye)) == VisionDetail(eye=expected)

    def test_professional_body_site(self):
        """Test professional items carry a body site."""
        detail = item_detail_for(AuthorizationType.PROFESSIONAL, LineItem(body_site="RT"))
        assert detail == BodySiteDetail(code="RT")

    def test_pharmacy_without_code_raises(self):
        """Test pharmacy items need a medication or product code."""
        with pytest.raises(CompositionError):
            item_detail_for(AuthorizationType.PHARMACY, LineItem())

    def test_pharmacy_device(self):
        """Test devices are flagged."""
        detail = item_detail_for(AuthorizationType.PHARMACY, LineItem(item_type="device", medication_code="DEV1"))
        assert isinstance(detail, PharmacyDetail)
        assert detail.is_device is True


# =============================================================================
# Amount Tests
# =============================================================================


class TestItemAmounts:
    """Test net and payer share derivation."""

    def test_net_derived(self):
        """Test net = quantity * unit price * factor + tax."""
        amounts = compute_item_amounts(
            LineItem(quantity=Decimal("2"), unit_price=Decimal("100"), factor=Decimal("0.5"), tax=Decimal("15"))
        )
        assert amounts.net == Decimal("115")
        assert amounts.payer_share == Decimal("115")

    def test_payer_share_derived(self):
        """Test payer share = net - patient share."""
        amounts = compute_item_amounts(
            LineItem(quantity=Decimal("1"), unit_price=Decimal("200"), patient_share=Decimal("40"))
        )
        assert amounts.payer_share == Decimal("160")

    def test_supplied_values_kept(self):
        """Test supplied net is not recomputed."""
        amounts = compute_item_amounts(LineItem(unit_price=Decimal("10"), net_amount=Decimal("99")))
        assert amounts.net == Decimal("99")

    def test_inconsistent_payer_share_logged_not_corrected(self, caplog):
        """Test a disagreeing payer share is sent as supplied with a warning."""
        item = LineItem(unit_price=Decimal("100"), patient_share=Decimal("20"), payer_share=Decimal("50"))
        with caplog.at_level(logging.WARNING, logger="src.services.nphies.claim_items"):
            amounts = compute_item_amounts(item)
        assert amounts.payer_share == Decimal("50")
        assert "payer share" in caplog.text


# =============================================================================
# Item Composition Tests
# =============================================================================


class TestBuildItem:
    """Test Claim.item rendering."""

    def test_field_order_and_totals(self):
        """Test item keys follow NPHIES order and integral money stays integer."""
        rendered, amounts, _ = build_item(
            LineItem(product_or_service_code="P1", unit_price=Decimal("205"), body_site="RT"),
            1,
            item_context(),
        )
        assert list(rendered) == [
            "extension", "sequence", "careTeamSequence", "diagnosisSequence",
            "productOrService", "servicedDate", "quantity", "unitPrice", "net", "bodySite",
        ]
        assert amounts.net == Decimal("205")
        assert rendered["net"] == {"value": 205, "currency": "SAR"}
        assert "factor" not in rendered
        assert rendered["bodySite"]["coding"][0]["code"] == "RT"

    def test_extension_order(self):
        """Test extension order: package, tax, patient-share, payer-share, maternity."""
        rendered, _, _ = build_item(LineItem(product_or_service_code="P1"), 1, item_context())
        suffixes = [ext["url"].rsplit("extension-", 1)[1] for ext in rendered["extension"]]
        assert suffixes == ["package", "tax", "patient-share", "payer-share", "maternity"]

    def test_missing_code_raises(self):
        """Test non-pharmacy items need a product code."""
        with pytest.raises(CompositionError):
            build_item(LineItem(), 1, item_context())

    def test_dental_sites(self):
        """Test dental items render tooth bodySite and surface subSite."""
        rendered, _, _ = build_item(
            LineItem(product_or_service_code="D1", tooth_number="36", tooth_surface="MOD"),
            1,
            item_context(AuthorizationType.DENTAL),
        )
        assert rendered["bodySite"]["coding"][0]["display"] == "LOWER LEFT; PERMANENT TEETH # 6"
        assert rendered["subSite"][0]["coding"][0]["code"] == "MOD"

    def test_pharmacy_extensions(self):
        """Test medications carry prescribed medication and selection reason."""
        rendered, _, _ = build_item(
            LineItem(medication_code="7000000001", pharmacist_substitute="Irreplaceable"),
            1,
            item_context(AuthorizationType.PHARMACY, diagnoses=()),
        )
        extension_value(rendered, "prescribed-Medication")
        reason = extension_value(rendered, "pharmacist-Selection-Reason")
        assert reason["valueCodeableConcept"]["coding"][0]["code"] == "patient-request"
        extension_value(rendered, "pharmacist-substitute")
        assert rendered["productOrService"]["coding"][0]["system"].endswith("/medication-codes")
        assert "diagnosisSequence" not in rendered

    def test_serviced_date_clamped_to_period(self):
        """Test item dates fall inside the encounter period."""
        ctx = item_context(period_start=datetime(2025, 6, 10, 8, 0), period_end=datetime(2025, 6, 12, 8, 0))
        early, _, _ = build_item(LineItem(product_or_service_code="P1", serviced_date=date(2025, 6, 1)), 1, ctx)
        late, _, _ = build_item(LineItem(product_or_service_code="P1", serviced_date=date(2025, 7, 1)), 2, ctx)
        assert early["servicedDate"] == "2025-06-10"
        assert late["servicedDate"] == "2025-06-12"


class TestSequenceLinks:
    """Test item links to diagnoses and supporting info."""

    def test_unknown_diagnosis_sequences_fall_back_to_principal(self):
        """Test every diagnosis link resolves."""
        rendered, _, _ = build_item(
            LineItem(product_or_service_code="P1", diagnosis_sequences=[7]),
            1,
            item_context(diagnoses=(1, 2)),
        )
        assert rendered["diagnosisSequence"] == [1]

    def test_information_links_default_to_all(self):
        """Test items link every supporting info entry by default."""
        request = AuthorizationRequest(
            auth_type="professional",
            supporting_info=[SupportingInfoEntry(category="pulse", value_quantity=Decimal("80"))],
        )
        supporting = compose_supporting_info(request, AuthorizationType.PROFESSIONAL)
        rendered, _, _ = build_item(LineItem(product_or_service_code="P1"), 1, item_context(supporting=supporting))
        assert rendered["informationSequence"] == [1, 2]

    def test_information_links_follow_prepended_chief_complaint(self):
        """Test stored supporting info sequences are translated after renumbering."""
        request = AuthorizationRequest(
            auth_type="professional",
            supporting_info=[
                SupportingInfoEntry(sequence=1, category="vital-sign-weight", value_quantity=Decimal("72")),
                SupportingInfoEntry(sequence=2, category="temperature", value_quantity=Decimal("38.2")),
            ],
            items=[LineItem(product_or_service_code="P1", information_sequences=[2])],
        )
        supporting = compose_supporting_info(request, AuthorizationType.PROFESSIONAL)
        assert [e["category"]["coding"][0]["code"] for e in supporting.entries] == [
            "chief-complaint", "vital-sign-weight", "temperature",
        ]
        assert supporting.renumbered == {1: 2, 2: 3}

        composed = compose_items(request, item_context(supporting=supporting))
        links = composed.entries[0]["informationSequence"]
        assert links == [3]
        assert supporting.entries[links[0] - 1]["category"]["coding"][0]["code"] == "temperature"

    def test_information_links_use_stored_order_not_position(self):
        """Test links resolve by stored sequence when entries arrive out of order."""
        request = AuthorizationRequest(
            auth_type="vision",
            supporting_info=[
                SupportingInfoEntry(sequence=5, category="info", value_string="second"),
                SupportingInfoEntry(sequence=3, category="info", value_string="first"),
            ],
            items=[LineItem(product_or_service_code="V1", information_sequences=[5, 9])],
        )
        supporting = compose_supporting_info(request, AuthorizationType.VISION)
        assert [e["valueString"] for e in supporting.entries] == ["first", "second"]

        composed = compose_items(request, item_context(AuthorizationType.VISION, supporting=supporting))
        assert composed.entries[0]["informationSequence"] == [2]

    def test_unsequenced_entries_known_by_position(self):
        """Test entries without stored sequences are addressed by position."""
        request = AuthorizationRequest(
            auth_type="professional",
            chief_complaint="Cough",
            supporting_info=[
                SupportingInfoEntry(category="pulse", value_quantity=Decimal("80")),
                SupportingInfoEntry(category="temperature", value_quantity=Decimal("37")),
            ],
        )
        supporting = compose_supporting_info(request, AuthorizationType.PROFESSIONAL)
        assert supporting.renumbered == {1: 2, 2: 3}

    def test_pharmacy_links_days_supply(self):
        """Test medications link to their days-supply entry and devices to none."""
        request = AuthorizationRequest(
            auth_type="pharmacy",
            items=[
                LineItem(medication_code="MED1", days_supply=30),
                LineItem(item_type="device", medication_code="DEV1"),
            ],
        )
        supporting = compose_supporting_info(request, AuthorizationType.PHARMACY)
        composed = compose_items(request, item_context(AuthorizationType.PHARMACY, supporting=supporting, diagnoses=()))
        assert composed.entries[0]["informationSequence"] == [1]
        assert "informationSequence" not in composed.entries[1]

    def test_items_renumbered(self):
        """Test items are numbered 1..n and nets summed."""
        request = AuthorizationRequest(
            auth_type="professional",
            items=[
                LineItem(sequence=4, product_or_service_code="P1", unit_price=Decimal("10")),
                LineItem(sequence=9, product_or_service_code="P2", unit_price=Decimal("15.5")),
            ],
        )
        composed = compose_items(request, item_context())
        assert [e["sequence"] for e in composed.entries] == [1, 2]
        assert composed.total_net == Decimal("25.5")
