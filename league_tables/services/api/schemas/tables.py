"""积分榜运维接口相关的 Pydantic Schema。"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class RecalculationRequest(BaseModel):
    league_id: str = Field(..., min_length=1, description="联赛 ID")
    season_id: Optional[str] = Field(default=None, description="赛季 ID，为空时使用当前赛季")
    priority: Literal["low", "normal", "high"] = "high"
    description: Optional[str] = None


class JobRef(BaseModel):
    job_id: str
    league_id: str
    season_id: str


class RecalculationResponse(BaseModel):
    success: bool = True
    job_id: str
    league_id: str
    season_id: str
    message: str


class RecalculateAllRequest(BaseModel):
    season_id: Optional[str] = None
    description: Optional[str] = None


class RecalculateAllResponse(BaseModel):
    success: bool = True
    total: int
    jobs: List[JobRef] = Field(default_factory=list)


class JobHistoryEntry(BaseModel):
    job_id: str
    league_id: str
    season_id: str
    trigger: str
    status: str
    priority: str
    started_at: str
    completed_at: Optional[str] = None
    duration_ms: Optional[float] = None
    retry_count: int = 0
    error: Optional[str] = None
    entries_updated: int = 0
    description: Optional[str] = None


class JobHistoryResponse(BaseModel):
    league_id: str
    total: int
    history: List[JobHistoryEntry] = Field(default_factory=list)


class DeadLetterJob(BaseModel):
    job_id: str
    league_id: str
    season_id: str
    priority: str
    trigger: str
    retry_count: int
    last_error: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_history: List[Dict[str, Any]] = Field(default_factory=list)


class DeadLetterResponse(BaseModel):
    total: int
    jobs: List[DeadLetterJob] = Field(default_factory=list)


class ResubmitResponse(BaseModel):
    success: bool = True
    job_id: str
    message: str


class AutomationStateResponse(BaseModel):
    success: bool = True
    paused: bool
    message: str


class SnapshotSummary(BaseModel):
    snapshot_id: str
    league_id: str
    season_id: str
    checksum: str
    created_at: datetime
    description: str = ""
    entry_count: int = 0
    file_size: int = 0
    compressed: bool = False


class SnapshotListResponse(BaseModel):
    league_id: str
    season_id: str
    total: int
    snapshots: List[SnapshotSummary] = Field(default_factory=list)


class CreateSnapshotRequest(BaseModel):
    league_id: str = Field(..., min_length=1)
    season_id: str = Field(..., min_length=1)
    description: str = ""


class CreateSnapshotResponse(BaseModel):
    success: bool = True
    snapshot_id: str


class RestoreSnapshotResponse(BaseModel):
    success: bool = True
    snapshot_id: str
    league_id: str
    season_id: str
    entries_restored: int
    restored_at: datetime
    backup_snapshot_id: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
