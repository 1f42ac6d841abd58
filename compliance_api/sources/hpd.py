"""Adapter de violaciones HPD (Housing Preservation & Development)."""

from __future__ import annotations

from typing import Optional

from ..core.domain.building import BuildingIdentifier
from ..core.domain.events import SourceTag
from .base import FetchFilters, SourceAdapter, soql_quote


class HPDViolationsAdapter(SourceAdapter):
    """Violaciones HPD por BBL (dataset wvxf-dwi5)."""

    source = SourceTag.HPD
    default_dataset = "wvxf-dwi5"
    date_field = "inspectiondate"
    order_field = "inspectiondate DESC, :id"
    field_map = {
        "violation_id": "violationid",
        "class": "violationclass",
        "violation_class": "violationclass",
        "inspection_date": "inspectiondate",
        "approved_date": "approveddate",
        "nov_issued_date": "novissueddate",
        "current_status": "currentstatus",
        "violation_status": "violationstatus",
        "nov_description": "novdescription",
        "original_correct_by_date": "originalcorrectbydate",
        "new_correct_by_date": "newcorrectbydate",
    }

    def build_where(
        self, building: BuildingIdentifier, filters: Optional[FetchFilters] = None
    ) -> Optional[str]:
        if not building.bbl:
            return None
        return self._with_filters([f"bbl={soql_quote(building.bbl)}"], filters)
