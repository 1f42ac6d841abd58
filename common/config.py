from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from compliance_api.core.domain.building import BuildingIdentifier, PriorityTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    env_file: str
    buildings_file: str

    window_months: int
    strict: bool

    push_ws_url: Optional[str]
    push_reconnect_seconds: float

    api_host: str
    api_port: int


def load_env(env_file: Optional[str] = None) -> str:
    # Real environment variables always win over the dotenv file.
    env_file = env_file or os.getenv("COMPLIANCE_ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)
    return env_file


def get_settings(env_file: Optional[str] = None) -> Settings:
    env_file = load_env(env_file)

    return Settings(
        env_file=env_file,
        buildings_file=os.getenv("COMPLIANCE_BUILDINGS_FILE", "buildings.json"),
        window_months=max(1, int(os.getenv("AGGREGATION_WINDOW_MONTHS", "12"))),
        strict=os.getenv("COMPLIANCE_STRICT", "0").strip().lower() in ("1", "true", "yes"),
        push_ws_url=os.getenv("PUSH_WS_URL") or None,
        push_reconnect_seconds=float(os.getenv("PUSH_RECONNECT_SECONDS", "5")),
        api_host=os.getenv("API_HOST", "0.0.0.0"),
        api_port=int(os.getenv("API_PORT", "8080")),
    )


def parse_buildings(payload: dict) -> List[BuildingIdentifier]:
    """Edificios desde el JSON de configuración.

    Formato:
    {
        "buildings": [
            {"id": "14", "bbl": "1006210036", "bin": "1012345",
             "address": "68 Perry Street, New York, NY 10014", "tier": "medium"}
        ],
        "priorityBuildings": ["14"]
    }
    """
    priority = {str(b) for b in payload.get("priorityBuildings", [])}
    buildings: List[BuildingIdentifier] = []
    seen = set()
    for raw in payload.get("buildings", []):
        building_id = str(raw["id"])
        if building_id in seen:
            raise ValueError(f"Duplicate building id {building_id}")
        seen.add(building_id)
        tier = PriorityTier(str(raw.get("tier", PriorityTier.MEDIUM.value)).lower())
        if building_id in priority:
            tier = PriorityTier.HIGH
        buildings.append(
            BuildingIdentifier(
                id=building_id,
                bbl=str(raw.get("bbl") or ""),
                bin=str(raw.get("bin") or ""),
                address=str(raw.get("address") or ""),
                tier=tier,
                name=raw.get("name"),
            )
        )
    unknown = priority - seen
    if unknown:
        logger.warning("priorityBuildings not configured: %s", ",".join(sorted(unknown)))
    return buildings


def load_buildings(path: str) -> List[BuildingIdentifier]:
    file = Path(path)
    if not file.exists():
        logger.warning("Buildings file not found: %s", path)
        return []
    with file.open("r", encoding="utf-8") as fh:
        return parse_buildings(json.load(fh))
