"""Tests del normalizador y del modelo de registros crudos.

Ejecutar:
    pytest tests/test_normalization.py -v
"""

from datetime import datetime, timezone

import pytest

from compliance_api.core.domain.events import EventKind, EventStatus, Severity, SourceTag
from compliance_api.normalization.normalizer import Normalizer, month_key, parse_date
from compliance_api.normalization.severity import (
    ClassWeightedSeverityPolicy,
    FlatSeverityPolicy,
    severity_policy_from_env,
)
from compliance_api.sources.records import RawRecord, validate_row

from conftest import NOW, make_event


def _record(source, row, building_id="14") -> RawRecord:
    record, error = validate_row(source, building_id, row)
    assert error is None, error
    return record


@pytest.fixture
def normalizer() -> Normalizer:
    return Normalizer(now=lambda: NOW)


# =============================================================================
# FECHAS
# =============================================================================

class TestDates:
    """Parsing de fechas de Socrata y month_key."""

    def test_socrata_floating_timestamp(self):
        dt = parse_date("2024-03-15T00:00:00.000")
        assert dt == datetime(2024, 3, 15, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        # 23:30 en -05:00 ya es el mes siguiente en UTC
        dt = parse_date("2024-01-31T23:30:00-05:00")
        assert month_key(dt) == "2024-02"

    def test_us_format(self):
        assert parse_date("03/15/2024") == datetime(2024, 3, 15, tzinfo=timezone.utc)

    def test_unparseable_returns_none(self):
        assert parse_date("not a date") is None
        assert parse_date("") is None
        assert parse_date(None) is None

    def test_month_key_naive_is_utc(self):
        assert month_key(datetime(2023, 12, 31, 23, 59)) == "2023-12"


# =============================================================================
# HPD
# =============================================================================

class TestHPDNormalization:
    """Violaciones HPD: estado, severidad por clase y fecha de corrección."""

    def test_open_class_c_is_critical(self, normalizer):
        record = _record(SourceTag.HPD, {
            "violationid": "123",
            "violationclass": "c",
            "inspectiondate": "2024-05-02T00:00:00.000",
            "violationstatus": "Open",
            "newcorrectbydate": "2024-07-01T00:00:00.000",
        })
        event = normalizer.normalize_one(record)

        assert event.event_id == "hpd:123"
        assert event.kind == EventKind.VIOLATION
        assert event.status == EventStatus.OPEN
        assert event.severity == Severity.CRITICAL
        assert event.month_key == "2024-05"
        assert event.due_date == datetime(2024, 7, 1, tzinfo=timezone.utc)
        assert event.is_open_violation is True

    def test_closed_by_violationstatus(self, normalizer):
        record = _record(SourceTag.HPD, {
            "violationid": "9",
            "violationclass": "B",
            "inspectiondate": "2024-05-02",
            "violationstatus": "Close",
        })
        assert normalizer.normalize_one(record).status == EventStatus.CLOSED

    def test_currentstatus_marker_when_no_violationstatus(self, normalizer):
        record = _record(SourceTag.HPD, {
            "violationid": "10",
            "inspectiondate": "2024-05-02",
            "currentstatus": "VIOLATION DISMISSED",
        })
        assert normalizer.normalize_one(record).status == EventStatus.CLOSED

    def test_date_preference_falls_back(self, normalizer):
        record = _record(SourceTag.HPD, {
            "violationid": "11",
            "inspectiondate": "garbage",
            "novissueddate": "2024-02-10",
        })
        event = normalizer.normalize_one(record)
        assert event.month_key == "2024-02"
        assert event.date_flagged is False


# =============================================================================
# DOB / EMISIONES / DSNY
# =============================================================================

class TestOtherSources:
    """Permisos, emisiones y summons."""

    def test_dob_permit_id_includes_sequence(self, normalizer):
        record = _record(SourceTag.DOB, {
            "job_filing_number": "M0001",
            "permit_sequence": "2",
            "job_status": "Permit Issued",
            "issuance_date": "2024-06-01",
        })
        event = normalizer.normalize_one(record)
        assert event.event_id == "dob:M0001-2"
        assert event.kind == EventKind.PERMIT
        assert event.status == EventStatus.OPEN
        assert event.due_date is None

    def test_dob_expired_permit_is_closed(self, normalizer):
        record = _record(SourceTag.DOB, {
            "job_filing_number": "M0002",
            "job_status": "EXPIRED",
            "issuance_date": "2023-06-01",
        })
        assert normalizer.normalize_one(record).status == EventStatus.CLOSED

    def test_emission_carries_ghg_intensity(self, normalizer):
        record = _record(SourceTag.LL97, {
            "property_id": "555",
            "energy_star_score": "72",
            "total_ghg_emissions_intensity": "6.4",
            "year_ending": "2023-12-31",
        })
        event = normalizer.normalize_one(record)
        assert event.kind == EventKind.EMISSION
        assert event.amount == 6.4
        assert event.severity == Severity.LOW
        assert event.is_open_violation is False

    @pytest.mark.parametrize("intensity,severity", [
        ("8.0", Severity.LOW),
        ("8.01", Severity.MEDIUM),
        ("12.0", Severity.MEDIUM),
        ("12.5", Severity.HIGH),
    ])
    def test_emission_severity_follows_ll97_band(self, normalizer, intensity, severity):
        record = _record(SourceTag.LL97, {
            "property_id": "555",
            "total_ghg_emissions_intensity": intensity,
            "year_ending": "2023-12-31",
        })
        assert normalizer.normalize_one(record).severity == severity

    def test_emission_years_of_one_property_are_distinct_events(self, normalizer):
        rows = [
            {"property_id": "77", "year_ending": "2024-01-31T00:00:00.000", "total_ghg_emissions_intensity": "9.1"},
            {"property_id": "77", "year_ending": "2024-05-31T00:00:00.000", "total_ghg_emissions_intensity": "6.4"},
        ]
        result = normalizer.normalize([_record(SourceTag.LL97, row) for row in rows])

        assert [e.event_id for e in result.events] == ["ll97:77-2024-01-31", "ll97:77-2024-05-31"]
        assert [e.month_key for e in result.events] == ["2024-01", "2024-05"]

    def test_dsny_paid_is_closed_but_unpaid_is_open(self, normalizer):
        paid = _record(SourceTag.DSNY, {
            "ticket_number": "T1",
            "violation_date": "2024-04-01",
            "hearing_result": "PAID IN FULL",
        })
        unpaid = _record(SourceTag.DSNY, {
            "ticket_number": "T2",
            "violation_date": "2024-04-01",
            "hearing_result": "UNPAID",
            "balance_due": "$300.00",
        })
        assert normalizer.normalize_one(paid).status == EventStatus.CLOSED
        unpaid_event = normalizer.normalize_one(unpaid)
        assert unpaid_event.status == EventStatus.OPEN
        assert unpaid_event.amount == 300.0
        assert unpaid_event.severity == Severity.MEDIUM
        assert unpaid_event.kind == EventKind.COLLECTION


# =============================================================================
# BATCH
# =============================================================================

class TestBatch:
    """El batch nunca aborta por un registro malo."""

    def test_missing_dates_are_flagged_with_now(self, normalizer):
        record = _record(SourceTag.HPD, {"violationid": "1"})
        result = normalizer.normalize([record])

        assert result.date_flagged == 1
        assert result.events[0].occurred_at == NOW
        assert result.events[0].month_key == "2024-06"

    def test_invalid_rows_are_rejected_at_validation(self):
        record, error = validate_row(SourceTag.HPD, "14", {"violationclass": "A"})
        assert record is None
        assert "validation error" in error

    def test_out_of_range_energy_score_rejected(self):
        record, error = validate_row(SourceTag.LL97, "14", {"property_id": "1", "energy_star_score": "250"})
        assert record is None

    def test_non_numeric_energy_score_becomes_none(self):
        record, error = validate_row(SourceTag.LL97, "14", {"property_id": "1", "energy_star_score": "Not Available"})
        assert error is None
        assert record.fields.energy_star_score is None

    def test_negative_ghg_intensity_rejected(self):
        record, error = validate_row(
            SourceTag.LL97, "14", {"property_id": "1", "total_ghg_emissions_intensity": "-3"}
        )
        assert record is None
        assert error is not None


# =============================================================================
# POLÍTICAS DE SEVERIDAD
# =============================================================================

class TestSeverityPolicies:

    def test_flat_counts_open_violations_only(self):
        policy = FlatSeverityPolicy()
        assert policy.weight(make_event("a")) == 1.0
        assert policy.weight(make_event("b", status=EventStatus.CLOSED)) == 0.0
        assert policy.weight(make_event("c", kind=EventKind.PERMIT, source=SourceTag.DOB)) == 0.0

    def test_class_weighted(self):
        policy = ClassWeightedSeverityPolicy()
        assert policy.weight(make_event("a", severity=Severity.CRITICAL)) == 2.0
        assert policy.weight(make_event("b", severity=Severity.LOW)) == 0.5

    def test_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("SEVERITY_POLICY", "class_weighted")
        assert isinstance(severity_policy_from_env(), ClassWeightedSeverityPolicy)
        monkeypatch.setenv("SEVERITY_POLICY", "bogus")
        assert isinstance(severity_policy_from_env(), FlatSeverityPolicy)
