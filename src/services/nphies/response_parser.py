"""
NPHIES Prior Authorization Response Parser.

Source: NPHIES FHIR Implementation Guide, ClaimResponse (priorauth-response)
Verified: 2025-12-19

Parses a priorauth-response message bundle into a ParsedResponse.
Classification order:
1. Malformed container -> PARSE_ERROR
2. OperationOutcome with an error/fatal issue -> error result
3. No ClaimResponse -> PARSE_ERROR
4. ClaimResponse -> outcome, adjudication, items, totals, errors, transfer

The parser never raises; failures come back as ``errors`` entries.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from src.core.enums import AdjudicationOutcome, ClaimResponseOutcome
from src.services.nphies.fhir_base import (
    META_TAG_SYSTEM,
    NPHIES_GENERATED_TAG,
    find_extension,
    first_coding,
    to_decimal,
)

logger = logging.getLogger(__name__)

PARSE_ERROR = "PARSE_ERROR"


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class ResponseError:
    """Error reported by NPHIES or produced while parsing."""
    code: Optional[str]
    message: Optional[str] = None
    severity: Optional[str] = None
    location: Optional[str] = None


@dataclass
class AdjudicationDetail:
    """One ClaimResponse.item.adjudication entry."""
    category: Optional[str]
    category_display: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    value: Optional[Decimal] = None
    reason: Optional[str] = None
    reason_display: Optional[str] = None


@dataclass
class ItemAdjudication:
    """Adjudication result for one requested item."""
    item_sequence: Optional[int]
    outcome: Optional[str] = None
    adjudication: List[AdjudicationDetail] = field(default_factory=list)

    # Pre-extracted amounts
    eligible_amount: Optional[Decimal] = None
    benefit_amount: Optional[Decimal] = None
    copay_amount: Optional[Decimal] = None
    approved_quantity: Optional[Decimal] = None


@dataclass
class Totals:
    """One ClaimResponse.total entry."""
    category: Optional[str]
    category_display: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None


@dataclass
class Period:
    start: Optional[str] = None
    end: Optional[str] = None


@dataclass
class TransferInfo:
    """Transfer authorization granted to another provider."""
    auth_number: str
    provider: Optional[str] = None
    period: Optional[Period] = None


@dataclass
class PatientSummary:
    id: Optional[str]
    name: Optional[str] = None
    identifier: Optional[str] = None
    identifier_type: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = None


@dataclass
class CoverageSummary:
    id: Optional[str]
    member_id: Optional[str] = None
    status: Optional[str] = None
    type_code: Optional[str] = None
    type_display: Optional[str] = None
    relationship: Optional[str] = None
    period: Optional[Period] = None
    plan_name: Optional[str] = None
    plan_value: Optional[str] = None


@dataclass
class OrganizationSummary:
    id: Optional[str]
    name: Optional[str] = None
    nphies_id: Optional[str] = None


@dataclass
class ParsedResponse:
    """Complete parsed priorauth-response."""
    success: bool = False
    outcome: str = ClaimResponseOutcome.ERROR.value
    adjudication_outcome: Optional[str] = None
    disposition: Optional[str] = None
    is_nphies_generated: bool = False

    # Authorization
    pre_auth_ref: Optional[str] = None
    pre_auth_period: Optional[Period] = None

    # Results
    item_results: List[ItemAdjudication] = field(default_factory=list)
    totals: List[Totals] = field(default_factory=list)
    errors: List[ResponseError] = field(default_factory=list)
    transfer: Optional[TransferInfo] = None

    # Response metadata
    nphies_response_id: Optional[str] = None
    response_code: Optional[str] = None
    message_header_id: Optional[str] = None
    claim_response_status: Optional[str] = None
    claim_response_use: Optional[str] = None
    claim_response_created: Optional[str] = None
    claim_type: Optional[str] = None
    claim_subtype: Optional[str] = None
    insurance_sequence: Optional[int] = None
    insurance_focal: Optional[bool] = None
    original_request_identifier: Optional[str] = None

    # Parties
    patient: Optional[PatientSummary] = None
    coverage: Optional[CoverageSummary] = None
    provider: Optional[OrganizationSummary] = None
    insurer: Optional[OrganizationSummary] = None

    def total(self, category: str) -> Optional[Decimal]:
        """Total amount for a category (e.g. ``eligible``, ``benefit``)."""
        for total in self.totals:
            if total.category == category:
                return total.amount
        return None


# =============================================================================
# Parser
# =============================================================================


def _period(value: Optional[Dict[str, Any]]) -> Optional[Period]:
    if not isinstance(value, dict):
        return None
    return Period(start=value.get("start"), end=value.get("end"))


def _error_location(concept: Optional[Dict[str, Any]]) -> Optional[str]:
    ext = find_extension(first_coding(concept), "error-expression")
    return ext.get("valueString") if ext else None


def _has_identifier_system(resource: Dict[str, Any], fragment: str) -> bool:
    return any(fragment in str(ident.get("system", "")) for ident in resource.get("identifier") or [])


class PriorAuthResponseParser:
    """
    Prior authorization response parser.

    Usage:
        parser = PriorAuthResponseParser()
        parsed = parser.parse(response_bundle)
        if parsed.success:
            print(f"Approved under {parsed.pre_auth_ref}")
    """

    def parse(self, bundle: Any) -> ParsedResponse:
        """
        Parse a priorauth-response bundle.

        Args:
            bundle: Decoded response bundle

        Returns:
            ParsedResponse; ``success`` is False with errors on any failure
        """
        if not isinstance(bundle, dict) or not isinstance(bundle.get("entry"), list):
            return self._parse_error("Invalid response bundle")

        try:
            return self._parse_bundle(bundle)
        except Exception as e:
            logger.exception("Failed to parse prior auth response")
            return self._parse_error(str(e))

    def _parse_error(self, message: str, is_nphies_generated: bool = False) -> ParsedResponse:
        return ParsedResponse(
            success=False,
            outcome=ClaimResponseOutcome.ERROR.value,
            is_nphies_generated=is_nphies_generated,
            errors=[ResponseError(code=PARSE_ERROR, message=message)],
        )

    def _parse_bundle(self, bundle: Dict[str, Any]) -> ParsedResponse:
        resources = [
            entry.get("resource") for entry in bundle["entry"]
            if isinstance(entry, dict) and isinstance(entry.get("resource"), dict)
        ]
        is_generated = self._is_nphies_generated(bundle)

        outcome_resource = self._first(resources, "OperationOutcome")
        if outcome_resource is not None:
            issues = self._operation_outcome_errors(outcome_resource)
            if any(issue.severity in ("error", "fatal") for issue in issues):
                logger.warning(f"NPHIES returned OperationOutcome with {len(issues)} issue(s)")
                return ParsedResponse(
                    success=False,
                    outcome=ClaimResponseOutcome.ERROR.value,
                    is_nphies_generated=is_generated,
                    errors=issues,
                )

        claim_response = self._first(resources, "ClaimResponse")
        if claim_response is None:
            return self._parse_error("No ClaimResponse found in bundle", is_generated)

        header = self._first(resources, "MessageHeader") or {}
        parsed = ParsedResponse(is_nphies_generated=is_generated)
        self._parse_claim_response(claim_response, parsed)
        parsed.response_code = (header.get("response") or {}).get("code")
        parsed.message_header_id = header.get("id")
        self._parse_parties(resources, parsed)
        self._classify(parsed)
        return parsed

    @staticmethod
    def _first(resources: List[Dict[str, Any]], resource_type: str) -> Optional[Dict[str, Any]]:
        for resource in resources:
            if resource.get("resourceType") == resource_type:
                return resource
        return None

    @staticmethod
    def _is_nphies_generated(bundle: Dict[str, Any]) -> bool:
        tags = (bundle.get("meta") or {}).get("tag") or []
        return any(
            tag.get("system") == META_TAG_SYSTEM and tag.get("code") == NPHIES_GENERATED_TAG
            for tag in tags if isinstance(tag, dict)
        )

    @staticmethod
    def _operation_outcome_errors(outcome: Dict[str, Any]) -> List[ResponseError]:
        errors = []
        for issue in outcome.get("issue") or []:
            details = issue.get("details") or {}
            detail_coding = first_coding(details)
            location = _error_location(details)
            if location is None and issue.get("location"):
                location = ", ".join(issue["location"])
            errors.append(ResponseError(
                code=detail_coding.get("code") or issue.get("code"),
                message=detail_coding.get("display") or details.get("text") or issue.get("diagnostics"),
                severity=issue.get("severity"),
                location=location,
            ))
        return errors

    def _parse_claim_response(self, claim_response: Dict[str, Any], parsed: ParsedResponse) -> None:
        parsed.outcome = claim_response.get("outcome") or ClaimResponseOutcome.COMPLETE.value
        adjudication_ext = find_extension(claim_response, "extension-adjudication-outcome")
        if adjudication_ext:
            parsed.adjudication_outcome = first_coding(adjudication_ext.get("valueCodeableConcept")).get("code")
        parsed.disposition = claim_response.get("disposition")
        parsed.pre_auth_ref = claim_response.get("preAuthRef")
        parsed.pre_auth_period = _period(claim_response.get("preAuthPeriod"))

        identifiers = claim_response.get("identifier") or []
        parsed.nphies_response_id = (identifiers[0].get("value") if identifiers else None) or claim_response.get("id")
        parsed.claim_response_status = claim_response.get("status")
        parsed.claim_response_use = claim_response.get("use")
        parsed.claim_response_created = claim_response.get("created")
        parsed.claim_type = first_coding(claim_response.get("type")).get("code")
        parsed.claim_subtype = first_coding(claim_response.get("subType")).get("code")

        insurance = (claim_response.get("insurance") or [{}])[0]
        parsed.insurance_sequence = insurance.get("sequence")
        parsed.insurance_focal = insurance.get("focal")
        parsed.original_request_identifier = (
            ((claim_response.get("request") or {}).get("identifier") or {}).get("value")
        )

        parsed.item_results = [self._parse_item(item) for item in claim_response.get("item") or []]
        parsed.totals = [self._parse_total(total) for total in claim_response.get("total") or []]
        parsed.errors = [
            ResponseError(
                code=first_coding(err.get("code")).get("code"),
                message=first_coding(err.get("code")).get("display"),
                location=_error_location(err.get("code")),
            )
            for err in claim_response.get("error") or []
        ]
        parsed.transfer = self._parse_transfer(claim_response)

    def _parse_item(self, item: Dict[str, Any]) -> ItemAdjudication:
        outcome_ext = find_extension(item, "extension-adjudication-outcome")
        details = []
        for adj in item.get("adjudication") or []:
            category = first_coding(adj.get("category"))
            reason = first_coding(adj.get("reason"))
            amount = adj.get("amount") or {}
            details.append(AdjudicationDetail(
                category=category.get("code"),
                category_display=category.get("display"),
                amount=to_decimal(amount.get("value")),
                currency=amount.get("currency"),
                value=to_decimal(adj.get("value")),
                reason=reason.get("code"),
                reason_display=reason.get("display"),
            ))

        def find(category: str) -> Optional[AdjudicationDetail]:
            return next((d for d in details if d.category == category), None)

        eligible, benefit, copay, approved = (
            find("eligible"), find("benefit"), find("copay"), find("approved-quantity")
        )
        return ItemAdjudication(
            item_sequence=item.get("itemSequence"),
            outcome=first_coding(outcome_ext.get("valueCodeableConcept")).get("code") if outcome_ext else None,
            adjudication=details,
            eligible_amount=eligible.amount if eligible else None,
            benefit_amount=benefit.amount if benefit else None,
            copay_amount=copay.amount if copay else None,
            approved_quantity=approved.value if approved else None,
        )

    @staticmethod
    def _parse_total(total: Dict[str, Any]) -> Totals:
        category = first_coding(total.get("category"))
        amount = total.get("amount") or {}
        return Totals(
            category=category.get("code"),
            category_display=category.get("display"),
            amount=to_decimal(amount.get("value")),
            currency=amount.get("currency"),
        )

    @staticmethod
    def _parse_transfer(claim_response: Dict[str, Any]) -> Optional[TransferInfo]:
        number_ext = find_extension(claim_response, "extension-transferAuthorizationNumber")
        if not number_ext or not number_ext.get("valueString"):
            return None
        provider_ext = find_extension(claim_response, "extension-transferAuthorizationProvider")
        period_ext = find_extension(claim_response, "extension-transferAuthorizationPeriod")
        provider = None
        if provider_ext:
            provider = ((provider_ext.get("valueReference") or {}).get("identifier") or {}).get("value")
        return TransferInfo(
            auth_number=number_ext["valueString"],
            provider=provider,
            period=_period(period_ext.get("valuePeriod")) if period_ext else None,
        )

    def _parse_parties(self, resources: List[Dict[str, Any]], parsed: ParsedResponse) -> None:
        patient = self._first(resources, "Patient")
        if patient:
            name = (patient.get("name") or [{}])[0]
            full_name = name.get("text") or " ".join(
                part for part in [" ".join(name.get("given") or []), name.get("family")] if part
            )
            identifier = (patient.get("identifier") or [{}])[0]
            parsed.patient = PatientSummary(
                id=patient.get("id"),
                name=full_name or None,
                identifier=identifier.get("value"),
                identifier_type=first_coding(identifier.get("type")).get("code"),
                gender=patient.get("gender"),
                birth_date=patient.get("birthDate"),
            )

        coverage = self._first(resources, "Coverage")
        if coverage:
            plan = next(
                (c for c in coverage.get("class") or [] if first_coding(c.get("type")).get("code") == "plan"),
                {},
            )
            type_coding = first_coding(coverage.get("type"))
            parsed.coverage = CoverageSummary(
                id=coverage.get("id"),
                member_id=((coverage.get("identifier") or [{}])[0]).get("value"),
                status=coverage.get("status"),
                type_code=type_coding.get("code"),
                type_display=type_coding.get("display"),
                relationship=first_coding(coverage.get("relationship")).get("code"),
                period=_period(coverage.get("period")),
                plan_name=plan.get("name"),
                plan_value=plan.get("value"),
            )

        organizations = [r for r in resources if r.get("resourceType") == "Organization"]
        for fragment, attr in (("provider-license", "provider"), ("payer-license", "insurer")):
            org = next((o for o in organizations if _has_identifier_system(o, fragment)), None)
            if org:
                license_id = next(
                    (i.get("value") for i in org.get("identifier") or [] if fragment in str(i.get("system", ""))),
                    None,
                )
                setattr(parsed, attr, OrganizationSummary(id=org.get("id"), name=org.get("name"), nphies_id=license_id))

    @staticmethod
    def _classify(parsed: ParsedResponse) -> None:
        """Success: complete/partial, not rejected, and no ClaimResponse errors."""
        has_errors = bool(parsed.errors) or parsed.outcome == ClaimResponseOutcome.ERROR.value
        parsed.success = (
            parsed.outcome in (ClaimResponseOutcome.COMPLETE.value, ClaimResponseOutcome.PARTIAL.value)
            and parsed.adjudication_outcome != AdjudicationOutcome.REJECTED.value
            and not has_errors
        )


def parse_prior_auth_response(bundle: Any) -> ParsedResponse:
    """Parse a priorauth-response bundle. Never raises."""
    return PriorAuthResponseParser().parse(bundle)
