"""Adapter de disclosure de energía y emisiones (LL84 / LL97)."""

from __future__ import annotations

from typing import Optional

from ..core.domain.building import BuildingIdentifier
from ..core.domain.events import SourceTag
from .base import FetchFilters, SourceAdapter, soql_quote


class EmissionsAdapter(SourceAdapter):
    """Benchmarking anual por BBL (dataset 5zyy-y8am por defecto)."""

    source = SourceTag.LL97
    default_dataset = "5zyy-y8am"
    date_field = ""
    order_field = "year_ending DESC, :id"
    field_map = {
        "nyc_borough_block_and_lot": "bbl",
        "bbl_10_digits": "bbl",
        "property_id_portfolio_manager": "property_id",
        "energy_star_1_100_score": "energy_star_score",
        "total_ghg_emissions_metric_tons_co2e": "total_ghg_emissions",
        "total_location_based_ghg": "total_ghg_emissions",
        "report_generation_date": "generation_date",
    }

    def build_where(
        self, building: BuildingIdentifier, filters: Optional[FetchFilters] = None
    ) -> Optional[str]:
        if not building.bbl:
            return None
        return self._with_filters([f"bbl={soql_quote(building.bbl)}"], filters)
