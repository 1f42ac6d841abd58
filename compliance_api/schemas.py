from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .core.domain.snapshot import ComplianceStatus, EmissionsBand, RiskLevel


class BuildingOut(BaseModel):
    id: str
    bbl: str
    bin: str
    address: str
    tier: str
    name: Optional[str] = None


class SnapshotOut(BaseModel):
    building_id: str
    score: float = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    status: ComplianceStatus
    open_violations: int
    critical_violations: int
    last_updated: datetime
    next_inspection_due: Optional[datetime] = None
    partial: bool = False
    failed_sources: List[str] = Field(default_factory=list)
    stale: bool = False
    emissions_band: Optional[EmissionsBand] = None


class BucketOut(BaseModel):
    building_id: str
    month: str
    violation_count: int = Field(..., ge=0)
    permit_count: int = Field(..., ge=0)
    dsny_count: int = Field(..., ge=0)
    emissions_score: Optional[float] = None


class TrendPointOut(BaseModel):
    month: str
    total_across_portfolio: int
    violations: int = 0
    permits: int = 0
    dsny: int = 0


class RefreshStateOut(BaseModel):
    building_id: str
    tier: str
    phase: str
    current_interval: float
    consecutive_failures: int
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    rerun_requested: bool = False
    last_error: Optional[str] = None


class TriggerResult(BaseModel):
    building_id: str
    result: str


class RetentionSweepResult(BaseModel):
    pruned_history: int
    pruned_buckets: int
    dropped_buildings: List[str] = Field(default_factory=list)


class HealthOut(BaseModel):
    status: str
    buildings: int
    in_flight: int
    scheduler_running: bool
    thresholds: Dict[str, float] = Field(default_factory=dict)
