"""比赛变更通知的 Pydantic Schema。"""
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from league_tables.services.schemas import MatchResult


class MatchPayload(BaseModel):
    """
    外部数据源推送的比赛记录

    比分不在此处做范围约束，负数等问题交给 MatchValidator 返回结构化错误码。
    """
    match_id: Optional[str] = None
    league_id: Optional[str] = None
    season_id: Optional[str] = None
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    status: str = "planned"
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None
    matchday: Optional[int] = None
    home_team_name: Optional[str] = None
    away_team_name: Optional[str] = None

    def to_match_result(self) -> MatchResult:
        return MatchResult(**self.model_dump())


class MatchEventRequest(BaseModel):
    action: Literal["created", "updated", "deleted"]
    match: MatchPayload
    previous: Optional[MatchPayload] = None


class ValidationIssueSchema(BaseModel):
    field: str
    code: str
    message: str


class MatchEventResponse(BaseModel):
    outcome: str
    accepted: bool
    job_ids: List[str] = Field(default_factory=list)
    errors: List[ValidationIssueSchema] = Field(default_factory=list)
    warnings: List[ValidationIssueSchema] = Field(default_factory=list)
    reason: Optional[str] = None
