"""Adapter de summons DSNY vía OATH Hearings Division.

OATH no conoce BBL ni BIN: se consulta por número + calle + borough
parseados de la dirección, restringido a las agencias emisoras de DSNY.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..core.domain.building import BuildingIdentifier
from ..core.domain.events import SourceTag
from .address import parse_address
from .base import FetchFilters, SourceAdapter, soql_quote

logger = logging.getLogger(__name__)

DSNY_AGENCIES = (
    "SANITATION OTHERS",
    "SANITATION DEPT",
    "SANITATION POLICE",
    "DSNY - SANITATION ENFORCEMENT AGENTS",
    "DSNY - SANITATION OTHERS",
    "SANITATION PIU",
    "SANITATION RECYCLING",
    "SANITATION VENDOR ENFORCEMENT",
    "SANITATION ENVIRON. POLICE",
    "SANITATION COMMERC.WASTE ZONE",
    "DOS - ENFORCEMENT AGENTS",
)


class DSNYSummonsAdapter(SourceAdapter):
    """Summons de sanidad por dirección (dataset jz4z-kudi)."""

    source = SourceTag.DSNY
    default_dataset = "jz4z-kudi"
    date_field = "violation_date"
    order_field = "violation_date DESC, :id"
    field_map = {
        "case_number": "ticket_number",
        "summons_number": "ticket_number",
        "status": "hearing_status",
        "fine_amount": "penalty_imposed",
    }

    def build_where(
        self, building: BuildingIdentifier, filters: Optional[FetchFilters] = None
    ) -> Optional[str]:
        parsed = parse_address(building.address)
        if parsed is None:
            return None
        borough = parsed.borough
        if borough is None:
            # sin pista de borough se asume Manhattan
            logger.debug("DSNY_BOROUGH_DEFAULT building=%s", building.id)
            borough = "MANHATTAN"

        agencies = " OR ".join(f"issuing_agency={soql_quote(a)}" for a in DSNY_AGENCIES)
        return self._with_filters(
            [
                f"({agencies})",
                f"violation_location_house={soql_quote(parsed.house_number)}",
                f"upper(violation_location_street_name)={soql_quote(parsed.street_name)}",
                f"upper(violation_location_borough)={soql_quote(borough)}",
            ],
            filters,
        )
