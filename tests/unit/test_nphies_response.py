"""
Unit Tests for NPHIES Response Handling.

Source: NPHIES FHIR Implementation Guide, ClaimResponse (priorauth-response)
Verified: 2025-12-19

Tests:
- Response classification (approved, partial, rejected, errors)
- OperationOutcome handling
- Item adjudication, totals and transfer extraction
- Structural validation messages
"""

from decimal import Decimal

import pytest

from src.services.nphies.fhir_base import META_TAG_SYSTEM, extension_url
from src.services.nphies.response_parser import (
    PARSE_ERROR,
    PriorAuthResponseParser,
    parse_prior_auth_response,
)
from src.services.nphies.response_validator import validate_response

NPHIES_CS = "http://nphies.sa/terminology/CodeSystem"


# =============================================================================
# Fixtures
# =============================================================================


def message_header(event="priorauth-response"):
    return {
        "resourceType": "MessageHeader",
        "id": "mh-resp-1",
        "eventCoding": {"system": f"{NPHIES_CS}/ksa-message-events", "code": event},
        "response": {"identifier": "mh-req-1", "code": "ok"},
    }


def adjudication_outcome(code):
    return {
        "url": extension_url("adjudication-outcome"),
        "valueCodeableConcept": {"coding": [{"system": f"{NPHIES_CS}/adjudication-outcome", "code": code}]},
    }


def adjudication(category, amount=None, value=None):
    entry = {"category": {"coding": [{"code": category}]}}
    if amount is not None:
        entry["amount"] = {"value": amount, "currency": "SAR"}
    if value is not None:
        entry["value"] = value
    return entry


def claim_response(outcome="complete", adjudication_code="approved", **extra):
    resource = {
        "resourceType": "ClaimResponse",
        "id": "cr-1",
        "extension": [adjudication_outcome(adjudication_code)],
        "identifier": [{"system": "http://ins-fhir.com.sa/claimresponse", "value": "CR-9001"}],
        "status": "active",
        "type": {"coding": [{"code": "professional"}]},
        "subType": {"coding": [{"code": "op"}]},
        "use": "preauthorization",
        "created": "2025-06-01T10:00:00Z",
        "request": {"identifier": {"value": "REQ-1001"}},
        "outcome": outcome,
        "disposition": "Approved as requested",
        "preAuthRef": "PA-778899",
        "preAuthPeriod": {"start": "2025-06-01", "end": "2025-07-01"},
        "insurance": [{"sequence": 1, "focal": True, "coverage": {"reference": "Coverage/cov-001"}}],
        "item": [{
            "extension": [adjudication_outcome("approved")],
            "itemSequence": 1,
            "adjudication": [
                adjudication("eligible", 150),
                adjudication("benefit", 135),
                adjudication("copay", 15),
                adjudication("approved-quantity", value=1),
            ],
        }],
        "total": [
            {"category": {"coding": [{"code": "eligible"}]}, "amount": {"value": 150, "currency": "SAR"}},
            {"category": {"coding": [{"code": "benefit"}]}, "amount": {"value": 135, "currency": "SAR"}},
        ],
    }
    resource.update(extra)
    return resource


def response_bundle(*resources, generated=False, event="priorauth-response"):
    bundle = {
        "resourceType": "Bundle",
        "id": "resp-bundle-1",
        "type": "message",
        "entry": [{"fullUrl": "urn:uuid:mh-resp-1", "resource": message_header(event)}]
        + [{"fullUrl": f"urn:uuid:{i}", "resource": r} for i, r in enumerate(resources)],
    }
    if generated:
        bundle["meta"] = {"tag": [{"system": META_TAG_SYSTEM, "code": "nphies-generated"}]}
    return bundle


def operation_outcome(severity="error"):
    return {
        "resourceType": "OperationOutcome",
        "issue": [{
            "severity": severity,
            "code": "business-rule",
            "details": {"coding": [{
                "extension": [{"url": extension_url("error-expression"), "valueString": "Claim.item[0]"}],
                "code": "BV-00027",
                "display": "Invalid service code",
            }]},
        }],
    }


@pytest.fixture
def parser():
    return PriorAuthResponseParser()


# =============================================================================
# Classification Tests
# =============================================================================


class TestClassification:
    """Test success classification."""

    def test_approved(self, parser):
        parsed = parser.parse(response_bundle(claim_response()))
        assert parsed.success is True
        assert parsed.outcome == "complete"
        assert parsed.adjudication_outcome == "approved"
        assert parsed.pre_auth_ref == "PA-778899"
        assert parsed.pre_auth_period.end == "2025-07-01"
        assert parsed.errors == []

    def test_partial(self, parser):
        parsed = parser.parse(response_bundle(claim_response(outcome="partial", adjudication_code="partial")))
        assert parsed.success is True

    def test_rejected(self, parser):
        """Test a rejected adjudication is not a success."""
        parsed = parser.parse(response_bundle(claim_response(adjudication_code="rejected")))
        assert parsed.success is False
        assert parsed.outcome == "complete"

    def test_queued_is_not_success(self, parser):
        parsed = parser.parse(response_bundle(claim_response(outcome="queued")))
        assert parsed.success is False

    def test_claim_response_errors(self, parser):
        """Test ClaimResponse.error entries fail the response."""
        errors = [{"code": {"coding": [{
            "extension": [{"url": extension_url("error-expression"), "valueString": "Claim.insurance"}],
            "code": "GE-00013",
            "display": "Coverage is not in force",
        }]}}]
        parsed = parser.parse(response_bundle(claim_response(error=errors)))
        assert parsed.success is False
        assert parsed.errors[0].code == "GE-00013"
        assert parsed.errors[0].message == "Coverage is not in force"
        assert parsed.errors[0].location == "Claim.insurance"

    def test_missing_outcome_defaults_to_complete(self, parser):
        resource = claim_response()
        del resource["outcome"]
        assert parser.parse(response_bundle(resource)).outcome == "complete"


# =============================================================================
# Error Path Tests
# =============================================================================


class TestErrorPaths:
    """Test malformed and error responses."""

    @pytest.mark.parametrize("bundle", [None, "text", {"resourceType": "Bundle"}, {"entry": "x"}])
    def test_invalid_container(self, parser, bundle):
        parsed = parser.parse(bundle)
        assert parsed.success is False
        assert parsed.errors[0].code == PARSE_ERROR
        assert parsed.errors[0].message == "Invalid response bundle"

    def test_operation_outcome_error(self, parser):
        """Test an error OperationOutcome short-circuits parsing."""
        parsed = parser.parse(response_bundle(operation_outcome(), claim_response(), generated=True))
        assert parsed.success is False
        assert parsed.outcome == "error"
        assert parsed.is_nphies_generated is True
        assert parsed.pre_auth_ref is None
        assert parsed.errors[0].code == "BV-00027"
        assert parsed.errors[0].message == "Invalid service code"
        assert parsed.errors[0].severity == "error"
        assert parsed.errors[0].location == "Claim.item[0]"

    def test_operation_outcome_only(self, parser):
        parsed = parser.parse(response_bundle(operation_outcome()))
        assert parsed.success is False
        assert parsed.outcome == "error"
        assert parsed.is_nphies_generated is False

    def test_operation_outcome_warning_is_ignored(self, parser):
        parsed = parser.parse(response_bundle(operation_outcome("warning"), claim_response()))
        assert parsed.success is True

    def test_missing_claim_response(self, parser):
        parsed = parser.parse(response_bundle())
        assert parsed.success is False
        assert parsed.errors[0].code == PARSE_ERROR
        assert parsed.errors[0].message == "No ClaimResponse found in bundle"

    def test_unexpected_shape_is_captured(self, parser):
        """Test parse never raises on odd element shapes."""
        parsed = parser.parse(response_bundle(claim_response(insurance="not-a-list")))
        assert parsed.success is False
        assert parsed.errors[0].code == PARSE_ERROR

    def test_generated_tag_only_from_meta(self, parser):
        assert parser.parse(response_bundle(claim_response())).is_nphies_generated is False
        assert parser.parse(response_bundle(claim_response(), generated=True)).is_nphies_generated is True


# =============================================================================
# Extraction Tests
# =============================================================================


class TestExtraction:
    """Test field extraction."""

    def test_item_adjudication(self):
        parsed = parse_prior_auth_response(response_bundle(claim_response()))
        item = parsed.item_results[0]
        assert item.item_sequence == 1
        assert item.outcome == "approved"
        assert item.eligible_amount == Decimal("150")
        assert item.benefit_amount == Decimal("135")
        assert item.copay_amount == Decimal("15")
        assert item.approved_quantity == Decimal("1")
        assert [d.category for d in item.adjudication] == ["eligible", "benefit", "copay", "approved-quantity"]

    def test_totals(self):
        parsed = parse_prior_auth_response(response_bundle(claim_response()))
        assert parsed.total("benefit") == Decimal("135")
        assert parsed.total("copay") is None

    def test_metadata(self):
        parsed = parse_prior_auth_response(response_bundle(claim_response()))
        assert parsed.nphies_response_id == "CR-9001"
        assert parsed.response_code == "ok"
        assert parsed.message_header_id == "mh-resp-1"
        assert parsed.original_request_identifier == "REQ-1001"
        assert parsed.claim_type == "professional"
        assert parsed.insurance_focal is True

    def test_transfer(self):
        transfer = [
            {"url": extension_url("transferAuthorizationNumber"), "valueString": "TR-55"},
            {
                "url": extension_url("transferAuthorizationProvider"),
                "valueReference": {"identifier": {"value": "PROV-2"}},
            },
            {"url": extension_url("transferAuthorizationPeriod"), "valuePeriod": {"start": "2025-06-02"}},
        ]
        resource = claim_response()
        resource["extension"] = resource["extension"] + transfer
        parsed = parse_prior_auth_response(response_bundle(resource))
        assert parsed.transfer.auth_number == "TR-55"
        assert parsed.transfer.provider == "PROV-2"
        assert parsed.transfer.period.start == "2025-06-02"

    def test_parties(self):
        patient = {
            "resourceType": "Patient",
            "id": "pat-001",
            "name": [{"family": "Al-Qahtani", "given": ["Ahmed"]}],
            "identifier": [{"type": {"coding": [{"code": "NI"}]}, "value": "1023456789"}],
            "gender": "male",
        }
        insurer = {
            "resourceType": "Organization",
            "id": "ins-001",
            "name": "Gulf Health Insurance",
            "identifier": [{"system": "http://nphies.sa/license/payer-license", "value": "INS-FHIR"}],
        }
        parsed = parse_prior_auth_response(response_bundle(claim_response(), patient, insurer))
        assert parsed.patient.name == "Ahmed Al-Qahtani"
        assert parsed.patient.identifier_type == "NI"
        assert parsed.insurer.nphies_id == "INS-FHIR"
        assert parsed.provider is None


# =============================================================================
# Validation Tests
# =============================================================================


class TestValidateResponse:
    """Test structural validation."""

    def test_valid(self):
        report = validate_response(response_bundle(claim_response()))
        assert report.valid is True
        assert report.errors == []

    def test_operation_outcome_satisfies_content_rule(self):
        assert validate_response(response_bundle(operation_outcome())).valid is True

    @pytest.mark.parametrize("bundle,message", [
        (None, "Response is empty"),
        ({}, "Response is empty"),
        ({"resourceType": "Parameters"}, "Response is not a FHIR Bundle"),
    ])
    def test_container_errors(self, bundle, message):
        assert validate_response(bundle).errors == [message]

    def test_missing_entries_stops(self):
        report = validate_response({"resourceType": "Bundle", "type": "collection"})
        assert report.errors == ['Bundle type is not "message"', "Bundle has no entries"]

    def test_header_and_content_errors(self):
        bundle = response_bundle(event="priorauth-request")
        bundle["entry"].insert(0, {"resource": {"resourceType": "Patient"}})
        report = validate_response(bundle)
        assert report.valid is False
        assert report.errors == [
            "First entry must be MessageHeader",
            "Expected priorauth-response event, got: None",
            "Bundle must contain ClaimResponse or OperationOutcome",
        ]

    def test_wrong_event(self):
        report = validate_response(response_bundle(claim_response(), event="priorauth-request"))
        assert report.errors == ["Expected priorauth-response event, got: priorauth-request"]

    def test_expected_event_override(self):
        bundle = response_bundle(claim_response(), event="cancel-response")
        assert validate_response(bundle, expected_event="cancel-response").valid is True

    def test_malformed_event_coding(self):
        """Test a non-object eventCoding is reported, not raised."""
        bundle = response_bundle(claim_response())
        bundle["entry"][0]["resource"]["eventCoding"] = [{"code": "priorauth-response"}]
        report = validate_response(bundle)
        assert report.errors == ["Expected priorauth-response event, got: None"]

    def test_non_object_entries_are_skipped(self):
        bundle = response_bundle(claim_response())
        bundle["entry"].extend(["x", None, {"resource": "ClaimResponse"}])
        assert validate_response(bundle).valid is True
