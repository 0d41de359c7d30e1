"""比赛变更通知 API：外部数据源在比赛创建/更新/删除后调用。"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from league_tables.services.api.dependencies import get_lifecycle_adapter
from league_tables.services.api.schemas.matches import (
    MatchEventRequest,
    MatchEventResponse,
    ValidationIssueSchema,
)
from league_tables.services.lifecycle import LifecycleEvent, MatchLifecycleAdapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/matches", tags=["Matches"])


@router.post("/events", response_model=MatchEventResponse)
async def handle_match_event(
    payload: MatchEventRequest,
    response: Response,
    adapter: MatchLifecycleAdapter = Depends(get_lifecycle_adapter),
) -> MatchEventResponse:
    """
    接收比赛变更通知

    **请求示例：**
    ```json
    {
      "action": "updated",
      "match": {"match_id": "m1", "league_id": "BL1", "season_id": "2024",
                "home_team_id": "t1", "away_team_id": "t2",
                "status": "finished", "home_goals": 2, "away_goals": 1},
      "previous": {"match_id": "m1", "league_id": "BL1", "season_id": "2024",
                   "home_team_id": "t1", "away_team_id": "t2", "status": "planned"}
    }
    ```

    校验失败时返回 400，body 中带有错误码列表，不会提交任何计算任务。
    """
    event = LifecycleEvent(
        action=payload.action,
        match=payload.match.to_match_result(),
        previous=payload.previous.to_match_result() if payload.previous else None,
    )
    result = await adapter.handle_event(event)

    if not result.accepted:
        response.status_code = 400

    validation = result.validation
    return MatchEventResponse(
        outcome=result.outcome,
        accepted=result.accepted,
        job_ids=result.job_ids,
        errors=[ValidationIssueSchema(**issue.to_dict()) for issue in validation.errors] if validation else [],
        warnings=[ValidationIssueSchema(**issue.to_dict()) for issue in validation.warnings] if validation else [],
        reason=result.reason,
    )
