"""Adapter de permisos DOB (Department of Buildings)."""

from __future__ import annotations

from typing import Optional

from ..core.domain.building import BuildingIdentifier
from ..core.domain.events import SourceTag
from .base import FetchFilters, SourceAdapter, soql_quote


class DOBPermitsAdapter(SourceAdapter):
    """Permisos DOB por BIN (dataset ipu4-2q9a, columna bin__)."""

    source = SourceTag.DOB
    default_dataset = "ipu4-2q9a"
    date_field = "issuance_date"
    order_field = "issuance_date DESC, :id"
    field_map = {
        "bin__": "bin",
        "job__": "job_filing_number",
        "job_filing_no": "job_filing_number",
        "permit_status": "job_status",
        "filing_status": "job_status",
        "permit_type": "job_type",
        "work_type": "job_type",
        "job_start_dt": "job_start_date",
        "permit_sequence__": "permit_sequence",
    }

    def build_where(
        self, building: BuildingIdentifier, filters: Optional[FetchFilters] = None
    ) -> Optional[str]:
        if not building.bin:
            return None
        return self._with_filters([f"bin__={soql_quote(building.bin)}"], filters)
