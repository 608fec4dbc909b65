"""
Pytest Configuration and Fixtures.
Shared NPHIES records and settings for all test modules.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from src.core.config import NphiesSettings
from src.schemas.prior_auth import (
    AuthorizationRequest,
    CoverageRecord,
    DiagnosisEntry,
    InsurerRecord,
    LineItem,
    PatientRecord,
    PractitionerRecord,
    ProviderRecord,
)


@pytest.fixture
def nphies_settings():
    """Settings with defaults only, ignoring any local .env file."""
    return NphiesSettings(_env_file=None)


@pytest.fixture
def patient_record():
    """Saudi national patient."""
    return PatientRecord(
        patient_id="pat-001",
        name="Ahmed Saleh Al-Qahtani",
        identifier="1023456789",
        gender="male",
        birth_date=date(1985, 3, 14),
        phone="+966500000001",
        marital_status="married",
    )


@pytest.fixture
def provider_record():
    """Hospital provider."""
    return ProviderRecord(
        provider_id="prov-001",
        provider_name="Riyadh Care Hospital",
        nphies_id="PR-FHIR",
        provider_type="hospital",
    )


@pytest.fixture
def insurer_record():
    """Payer organization."""
    return InsurerRecord(
        insurer_id="ins-001",
        insurer_name="Gulf Health Insurance",
        nphies_id="INS-FHIR",
    )


@pytest.fixture
def coverage_record():
    """Active self coverage."""
    return CoverageRecord(
        coverage_id="cov-001",
        member_id="MEM-556677",
        plan_id="GOLD",
        plan_name="Gold Plan",
        start_date=date(2025, 1, 1),
        end_date=date(2025, 12, 31),
    )


@pytest.fixture
def practitioner_record():
    """Internal medicine practitioner."""
    return PractitionerRecord(
        practitioner_id="prac-001",
        name="Sara Al-Harbi",
        license_number="LIC-7788",
        specialty_code="08.00",
    )


@pytest.fixture
def professional_request():
    """Outpatient professional request with two items."""
    return AuthorizationRequest(
        id="claim-001",
        auth_type="professional",
        encounter_class="ambulatory",
        request_number="REQ-1001",
        request_date=datetime(2025, 6, 1, 9, 30),
        encounter_start=datetime(2025, 6, 1, 9, 0),
        diagnoses=[
            DiagnosisEntry(code="J06.9", display="Acute upper respiratory infection"),
            DiagnosisEntry(code="R50.9", display="Fever", diagnosis_type="secondary"),
        ],
        items=[
            LineItem(
                product_or_service_code="83600-00-10",
                quantity=Decimal("1"),
                unit_price=Decimal("150"),
                serviced_date=date(2025, 6, 1),
            ),
            LineItem(
                product_or_service_code="73000-00-00",
                quantity=Decimal("2"),
                unit_price=Decimal("27.50"),
                tax=Decimal("5"),
                patient_share=Decimal("10"),
            ),
        ],
    )


@pytest.fixture
def party_records(patient_record, provider_record, insurer_record, coverage_record, practitioner_record):
    """Keyword arguments for compose_prior_auth_request."""
    return {
        "patient": patient_record,
        "provider": provider_record,
        "insurer": insurer_record,
        "coverage": coverage_record,
        "practitioner": practitioner_record,
    }


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
