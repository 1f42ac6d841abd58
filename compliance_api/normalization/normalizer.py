"""Normalizador: RawRecord heterogéneo -> CanonicalEvent.

Reglas:
- fecha efectiva = primer campo parseable según el orden de preferencia
  del dataset; si ninguno parsea se usa "ahora" y el evento queda marcado
- month_key = "YYYY-MM" de la fecha efectiva en UTC
- filas que no se pueden mapear se saltan y se cuentan; el batch nunca aborta
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..core.domain.events import (
    CanonicalEvent,
    EventKind,
    EventStatus,
    Severity,
    SourceTag,
)
from ..core.domain.snapshot import EmissionsBand, emissions_band
from ..metrics.prometheus import ROWS_SKIPPED
from ..sources.records import (
    DOBPermitRecord,
    DSNYSummonsRecord,
    EmissionRecord,
    HPDViolationRecord,
    RawRecord,
)

logger = logging.getLogger(__name__)

DATE_PREFERENCES: Dict[SourceTag, Tuple[str, ...]] = {
    SourceTag.HPD: ("inspectiondate", "novissueddate", "approveddate"),
    SourceTag.DOB: ("issuance_date", "filing_date", "job_start_date"),
    SourceTag.LL97: ("year_ending", "generation_date"),
    SourceTag.DSNY: ("violation_date", "hearing_date"),
}

HPD_CLASS_SEVERITY = {
    "C": Severity.CRITICAL,
    "B": Severity.HIGH,
    "A": Severity.MEDIUM,
}

EMISSIONS_BAND_SEVERITY = {
    EmissionsBand.COMPLIANT: Severity.LOW,
    EmissionsBand.WARNING: Severity.MEDIUM,
    EmissionsBand.NON_COMPLIANT: Severity.HIGH,
}

_HPD_CLOSED_MARKERS = ("CLOSE", "DISMISS", "CORRECTED", "CERTIFIED", "RESOLVED")
_DOB_CLOSED_MARKERS = ("EXPIRED", "COMPLETE", "SIGNED OFF", "REVOKED", "CLOSED", "WITHDRAWN", "CANCEL")
_DSNY_CLOSED_MARKERS = ("DISMISS", "PAID", "ALL TERMS MET", "NOT GUILTY", "WRITTEN OFF")

_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%Y %H:%M:%S", "%m/%d/%Y %I:%M:%S %p", "%Y%m%d")


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parsea una fecha de Socrata a datetime UTC.

    Acepta ISO-8601 (con o sin offset y hora), timestamps flotantes de
    Socrata ("2024-03-15T00:00:00.000") y MM/DD/YYYY. Valores sin zona
    se interpretan como UTC.
    """
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def month_key(dt: datetime) -> str:
    """"YYYY-MM" en UTC. Función pura de la fecha."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m")


def _has_marker(values: Iterable[Optional[str]], markers: Tuple[str, ...]) -> bool:
    for value in values:
        if value and any(re.search(rf"\b{re.escape(m)}", value.upper()) for m in markers):
            return True
    return False


@dataclass
class NormalizationResult:
    events: List[CanonicalEvent] = field(default_factory=list)
    skipped: int = 0
    date_flagged: int = 0

    def to_dict(self) -> dict:
        return {
            "events": len(self.events),
            "skipped": self.skipped,
            "date_flagged": self.date_flagged,
        }


class Normalizer:
    """Convierte registros tipados en eventos canónicos."""

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or (lambda: datetime.now(timezone.utc))

    def effective_date(self, record: RawRecord) -> Tuple[datetime, bool]:
        """Fecha efectiva del registro y si fue marcada por falta de fecha."""
        for name in DATE_PREFERENCES[record.source]:
            parsed = parse_date(getattr(record.fields, name, None))
            if parsed is not None:
                return parsed, False
        return self._now(), True

    def normalize(self, records: Iterable[RawRecord]) -> NormalizationResult:
        result = NormalizationResult()
        for record in records:
            try:
                event = self.normalize_one(record)
            except (ValueError, TypeError, AttributeError, KeyError) as e:
                result.skipped += 1
                ROWS_SKIPPED.labels(source=record.source.value, stage="normalization").inc()
                logger.warning(
                    "NORMALIZE_SKIPPED source=%s building=%s record=%s err=%s",
                    record.source.value, record.building_id, record.record_id, e,
                )
                continue
            if event.date_flagged:
                result.date_flagged += 1
                ROWS_SKIPPED.labels(source=record.source.value, stage="date_flagged").inc()
                logger.warning(
                    "NORMALIZE_DATE_FLAGGED source=%s building=%s record=%s",
                    record.source.value, record.building_id, record.record_id,
                )
            result.events.append(event)
        return result

    def normalize_one(self, record: RawRecord) -> CanonicalEvent:
        occurred_at, flagged = self.effective_date(record)
        fields = record.fields

        if isinstance(fields, HPDViolationRecord):
            kind, status, severity, amount, due = self._hpd(fields)
        elif isinstance(fields, DOBPermitRecord):
            kind, status, severity, amount, due = self._dob(fields)
        elif isinstance(fields, EmissionRecord):
            kind, status, severity, amount, due = self._emission(fields)
        elif isinstance(fields, DSNYSummonsRecord):
            kind, status, severity, amount, due = self._dsny(fields)
        else:
            raise TypeError(f"Unsupported record type {type(fields).__name__}")

        return CanonicalEvent(
            event_id=f"{record.source.value}:{record.record_id}",
            kind=kind,
            source=record.source,
            building_id=record.building_id,
            month_key=month_key(occurred_at),
            occurred_at=occurred_at,
            status=status,
            severity=severity,
            amount=amount,
            due_date=due,
            date_flagged=flagged,
        )

    @staticmethod
    def _hpd(r: HPDViolationRecord):
        if r.violationstatus:
            is_open = r.violationstatus.strip().upper().startswith("OPEN")
        else:
            is_open = not _has_marker([r.currentstatus], _HPD_CLOSED_MARKERS)
        severity = HPD_CLASS_SEVERITY.get((r.violationclass or "").strip(), Severity.LOW)
        due = parse_date(r.newcorrectbydate) or parse_date(r.originalcorrectbydate)
        status = EventStatus.OPEN if is_open else EventStatus.CLOSED
        return EventKind.VIOLATION, status, severity, None, due

    @staticmethod
    def _dob(r: DOBPermitRecord):
        closed = _has_marker([r.job_status], _DOB_CLOSED_MARKERS)
        status = EventStatus.CLOSED if closed else EventStatus.OPEN
        return EventKind.PERMIT, status, Severity.LOW, None, None

    @staticmethod
    def _emission(r: EmissionRecord):
        intensity = r.total_ghg_emissions_intensity
        severity = EMISSIONS_BAND_SEVERITY.get(emissions_band(intensity), Severity.LOW)
        return EventKind.EMISSION, EventStatus.CLOSED, severity, intensity, None

    @staticmethod
    def _dsny(r: DSNYSummonsRecord):
        closed = _has_marker(
            [r.hearing_result, r.hearing_status, r.compliance_status], _DSNY_CLOSED_MARKERS
        )
        if not closed and r.balance_due is not None and r.balance_due <= 0 and (r.paid_amount or 0) > 0:
            closed = True
        amount = r.balance_due if r.balance_due is not None else r.penalty_imposed
        severity = Severity.MEDIUM if (amount or 0) > 0 else Severity.LOW
        status = EventStatus.CLOSED if closed else EventStatus.OPEN
        return EventKind.COLLECTION, status, severity, amount, parse_date(r.hearing_date)
