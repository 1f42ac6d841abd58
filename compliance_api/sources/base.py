"""Contrato de adapters de fuente y cliente Socrata compartido.

Cada adapter conoce su dataset, su mapeo de nombres de campo y cómo
construir el $where de SoQL. La paginación, la validación de filas y el
paso por el BackoffController son comunes y viven aquí.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from ..core.domain.building import BuildingIdentifier
from ..core.domain.events import SourceTag
from ..metrics.prometheus import ROWS_SKIPPED
from ..resilience.backoff import BackoffController
from ..resilience.context import CycleContext
from ..resilience.errors import PermanentSourceError, error_from_response
from .config import SocrataSettings, SourceConfig
from .records import RawRecord, validate_row

logger = logging.getLogger(__name__)


def soql_quote(value: str) -> str:
    """Literal SoQL entre comillas simples."""
    return "'" + str(value).replace("'", "''") + "'"


@dataclass(frozen=True)
class FetchFilters:
    """Rango opcional de fechas (inclusive) sobre el campo de fecha del dataset."""
    since: Optional[date] = None
    until: Optional[date] = None

    def clause(self, date_field: str) -> List[str]:
        parts = []
        if self.since:
            parts.append(f"{date_field} >= '{self.since.isoformat()}T00:00:00'")
        if self.until:
            parts.append(f"{date_field} <= '{self.until.isoformat()}T23:59:59'")
        return parts


@dataclass
class FetchResult:
    source: SourceTag
    building_id: str
    records: List[RawRecord] = field(default_factory=list)
    rejected: int = 0
    pages: int = 0


class SocrataClient:
    """Cliente HTTP mínimo para endpoints /resource/{dataset}.json.

    No reintenta: los errores HTTP se convierten a la taxonomía de
    errores y el BackoffController decide.
    """

    def __init__(
        self,
        settings: Optional[SocrataSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings or SocrataSettings.from_env()
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self._settings.base_url

    def get_page(
        self,
        source: str,
        dataset_id: str,
        params: Dict[str, Any],
        timeout: float,
    ) -> List[Dict[str, Any]]:
        headers = {"Accept": "application/json"}
        if self._settings.app_token:
            headers["X-App-Token"] = self._settings.app_token

        url = f"{self._settings.base_url}/{dataset_id}.json"
        response = self._session.get(url, params=params, headers=headers, timeout=timeout)
        if not response.ok:
            raise error_from_response(source, response)

        try:
            payload = response.json()
        except ValueError as e:
            raise PermanentSourceError(source, f"Invalid JSON body: {e}") from e
        if not isinstance(payload, list):
            raise PermanentSourceError(source, "Expected a JSON array of rows")
        return payload

    def close(self) -> None:
        self._session.close()


class SourceAdapter(ABC):
    """Adapter de una fuente externa.

    Subclases definen:
    - source, default_dataset, date_field, order_field
    - field_map: nombre alternativo -> nombre canónico del registro
    - build_where(): cláusula SoQL para un edificio
    """

    source: SourceTag
    default_dataset: str = ""
    date_field: str = ""
    order_field: str = ":id"
    field_map: Dict[str, str] = {}

    def __init__(
        self,
        client: SocrataClient,
        controller: BackoffController,
        config: Optional[SourceConfig] = None,
    ):
        self._client = client
        self._controller = controller
        self._config = config or SourceConfig.from_env(
            self.source.name, self.default_dataset
        )
        controller.register_source(self.source.value, self._config.bucket)

    @property
    def config(self) -> SourceConfig:
        return self._config

    @abstractmethod
    def build_where(
        self, building: BuildingIdentifier, filters: Optional[FetchFilters] = None
    ) -> Optional[str]:
        """Cláusula $where para el edificio, o None si no tiene identificador."""

    def _with_filters(self, base: List[str], filters: Optional[FetchFilters]) -> str:
        parts = list(base)
        if filters and self.date_field:
            parts.extend(filters.clause(self.date_field))
        return " AND ".join(parts)

    def map_fields(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Mapea columnas alternativas a los nombres canónicos.

        Si el nombre canónico ya trae valor, gana sobre el alternativo.
        """
        mapped = dict(row)
        for alt, canonical in self.field_map.items():
            if alt not in row:
                continue
            if mapped.get(canonical) in (None, ""):
                mapped[canonical] = row[alt]
        return mapped

    def fetch(
        self,
        building: BuildingIdentifier,
        filters: Optional[FetchFilters] = None,
        ctx: Optional[CycleContext] = None,
    ) -> FetchResult:
        """Trae todas las filas del edificio paginando con $limit/$offset.

        Raises:
            SourceError: fallo de la fuente (tras la política de reintentos)
            CycleCancelled: el ciclo fue cancelado entre páginas
        """
        source = self.source.value
        result = FetchResult(source=self.source, building_id=building.id)

        where = self.build_where(building, filters)
        if where is None:
            logger.warning(
                "SOURCE_SKIPPED source=%s building=%s reason=missing_identifier",
                source, building.id,
            )
            return result

        cfg = self._config
        offset = 0
        fetched = 0
        while fetched < cfg.row_limit:
            if ctx is not None:
                ctx.raise_if_cancelled()

            limit = min(cfg.page_size, cfg.row_limit - fetched)
            params = {
                "$where": where,
                "$limit": limit,
                "$offset": offset,
                "$order": self.order_field,
            }
            rows = self._controller.execute(
                source,
                lambda p=params: self._client.get_page(
                    source, cfg.dataset_id, p, cfg.timeout_seconds
                ),
                ctx,
            )
            result.pages += 1
            fetched += len(rows)

            for row in rows:
                if not isinstance(row, dict):
                    result.rejected += 1
                    continue
                record, error = validate_row(self.source, building.id, self.map_fields(row))
                if record is None:
                    result.rejected += 1
                    logger.debug(
                        "ROW_REJECTED source=%s building=%s err=%s", source, building.id, error
                    )
                    continue
                result.records.append(record)

            if len(rows) < limit:
                break
            offset += len(rows)

        if result.rejected:
            ROWS_SKIPPED.labels(source=source, stage="validation").inc(result.rejected)
            logger.warning(
                "ROWS_REJECTED source=%s building=%s rejected=%d accepted=%d",
                source, building.id, result.rejected, len(result.records),
            )
        logger.info(
            "SOURCE_FETCH_OK source=%s building=%s records=%d pages=%d",
            source, building.id, len(result.records), result.pages,
        )
        return result
