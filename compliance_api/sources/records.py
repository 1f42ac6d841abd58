"""Registros crudos tipados por dataset.

Cada fila de Socrata se valida en el borde contra un modelo pydantic. Las
filas que no validan se rechazan y se cuentan, nunca llegan al normalizador.

Socrata devuelve todo como string; los validadores "before" convierten
escalares a str y "" a None para que los modelos sean tolerantes a ambos.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ..core.domain.events import SourceTag


def _blank_to_none(v: Any) -> Any:
    if v is None:
        return None
    if isinstance(v, str):
        v = v.strip()
        return v or None
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


def _to_float(v: Any) -> Optional[float]:
    if v is None:
        return None
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return float(v)
    text = str(v).strip().replace(",", "").replace("$", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        # "Not Available" y similares
        return None


class _SocrataRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    ID_FIELD: ClassVar[str] = ""

    @property
    def record_id(self) -> str:
        return str(getattr(self, self.ID_FIELD))


class HPDViolationRecord(_SocrataRecord):
    """Violación HPD (dataset wvxf-dwi5)."""

    ID_FIELD: ClassVar[str] = "violationid"

    violationid: str
    bbl: Optional[str] = None
    violationclass: Optional[str] = None
    inspectiondate: Optional[str] = None
    approveddate: Optional[str] = None
    novissueddate: Optional[str] = None
    currentstatus: Optional[str] = None
    violationstatus: Optional[str] = None
    novdescription: Optional[str] = None
    originalcorrectbydate: Optional[str] = None
    newcorrectbydate: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator("violationid")
    @classmethod
    def validate_id(cls, v):
        if not v:
            raise ValueError("violationid is required")
        return v

    @field_validator("violationclass")
    @classmethod
    def upper_class(cls, v):
        return v.upper() if v else v


class DOBPermitRecord(_SocrataRecord):
    """Permiso DOB (dataset ipu4-2q9a)."""

    ID_FIELD: ClassVar[str] = "job_filing_number"

    job_filing_number: str
    bin: Optional[str] = None
    job_type: Optional[str] = None
    job_status: Optional[str] = None
    issuance_date: Optional[str] = None
    filing_date: Optional[str] = None
    job_start_date: Optional[str] = None
    expiration_date: Optional[str] = None
    permit_sequence: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator("job_filing_number")
    @classmethod
    def validate_id(cls, v):
        if not v:
            raise ValueError("job_filing_number is required")
        return v

    @property
    def record_id(self) -> str:
        # un job puede tener varios permisos (uno por secuencia)
        if self.permit_sequence:
            return f"{self.job_filing_number}-{self.permit_sequence}"
        return self.job_filing_number


class EmissionRecord(_SocrataRecord):
    """Disclosure de energía/emisiones LL84/LL97."""

    ID_FIELD: ClassVar[str] = "property_id"

    property_id: str
    bbl: Optional[str] = None
    energy_star_score: Optional[float] = None
    total_ghg_emissions: Optional[float] = None
    total_ghg_emissions_intensity: Optional[float] = None
    year_ending: Optional[str] = None
    generation_date: Optional[str] = None

    @field_validator("property_id", "bbl", "year_ending", "generation_date", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator(
        "energy_star_score", "total_ghg_emissions", "total_ghg_emissions_intensity", mode="before"
    )
    @classmethod
    def parse_number(cls, v):
        return _to_float(v)

    @field_validator("total_ghg_emissions_intensity")
    @classmethod
    def validate_intensity(cls, v):
        if v is not None and v < 0:
            raise ValueError("total_ghg_emissions_intensity must be >= 0")
        return v

    @property
    def record_id(self) -> str:
        # una fila por propiedad y año de reporte
        period = self.year_ending or self.generation_date
        if period:
            return f"{self.property_id}-{period[:10]}"
        return self.property_id

    @field_validator("energy_star_score")
    @classmethod
    def validate_score(cls, v):
        if v is not None and not 0 <= v <= 100:
            raise ValueError("energy_star_score out of range")
        return v


class DSNYSummonsRecord(_SocrataRecord):
    """Summons DSNY vía OATH (dataset jz4z-kudi)."""

    ID_FIELD: ClassVar[str] = "ticket_number"

    ticket_number: str
    issuing_agency: Optional[str] = None
    violation_date: Optional[str] = None
    hearing_date: Optional[str] = None
    hearing_status: Optional[str] = None
    hearing_result: Optional[str] = None
    compliance_status: Optional[str] = None
    charge_1_code: Optional[str] = None
    balance_due: Optional[float] = None
    penalty_imposed: Optional[float] = None
    paid_amount: Optional[float] = None

    @field_validator(
        "ticket_number",
        "issuing_agency",
        "violation_date",
        "hearing_date",
        "hearing_status",
        "hearing_result",
        "compliance_status",
        "charge_1_code",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        return _blank_to_none(v)

    @field_validator("balance_due", "penalty_imposed", "paid_amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return _to_float(v)

    @field_validator("ticket_number")
    @classmethod
    def validate_id(cls, v):
        if not v:
            raise ValueError("ticket_number is required")
        return v


RecordModel = Union[HPDViolationRecord, DOBPermitRecord, EmissionRecord, DSNYSummonsRecord]

RECORD_MODELS: Dict[SourceTag, Type[_SocrataRecord]] = {
    SourceTag.HPD: HPDViolationRecord,
    SourceTag.DOB: DOBPermitRecord,
    SourceTag.LL97: EmissionRecord,
    SourceTag.DSNY: DSNYSummonsRecord,
}


@dataclass(frozen=True)
class RawRecord:
    """Fila validada de una fuente, aún sin normalizar."""
    source: SourceTag
    building_id: str
    fields: RecordModel

    @property
    def record_id(self) -> str:
        return self.fields.record_id


def validate_row(
    source: SourceTag, building_id: str, row: Dict[str, Any]
) -> Tuple[Optional[RawRecord], Optional[str]]:
    """Valida una fila cruda contra el modelo de su fuente.

    Returns:
        (RawRecord, None) si es válida, (None, error) si no
    """
    model = RECORD_MODELS[source]
    try:
        fields = model.model_validate(row)
    except ValidationError as e:
        return None, f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}"
    return RawRecord(source=source, building_id=building_id, fields=fields), None
