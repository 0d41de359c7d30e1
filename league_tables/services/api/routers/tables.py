"""积分榜运维 API 的路由定义。"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from league_tables.services.admin import AdminOperationsFacade
from league_tables.services.api.dependencies import get_admin_facade
from league_tables.services.api.schemas.tables import (
    AutomationStateResponse,
    CreateSnapshotRequest,
    CreateSnapshotResponse,
    DeadLetterJob,
    DeadLetterResponse,
    JobHistoryEntry,
    JobHistoryResponse,
    JobRef,
    RecalculateAllRequest,
    RecalculateAllResponse,
    RecalculationRequest,
    RecalculationResponse,
    ResubmitResponse,
    RestoreSnapshotResponse,
    SnapshotListResponse,
    SnapshotSummary,
)
from league_tables.services.errors import (
    JobNotFoundError,
    LeagueNotFoundError,
    MatchValidationError,
    NoActiveSeasonError,
    RollbackFailure,
    SnapshotNotFoundError,
    TableAutomationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tables", tags=["Tables"])


def _http_error(exc: TableAutomationError) -> HTTPException:
    """自动化异常 → HTTP 状态码"""
    if isinstance(exc, (LeagueNotFoundError, SnapshotNotFoundError, JobNotFoundError)):
        status_code = 404
    elif isinstance(exc, (NoActiveSeasonError, MatchValidationError)):
        status_code = 400
    elif isinstance(exc, RollbackFailure):
        status_code = 409
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=exc.to_dict())


# ==================== 手动触发 ====================

@router.post("/recalculate", response_model=RecalculationResponse)
async def trigger_recalculation(
    payload: RecalculationRequest,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> RecalculationResponse:
    """
    手动触发单个联赛的积分榜重算

    **请求示例：**
    ```json
    {"league_id": "BL1", "season_id": "2024", "description": "score correction"}
    ```
    未指定 season_id 时使用当前赛季；默认高优先级。
    """
    try:
        job = await facade.trigger_recalculation(
            payload.league_id,
            payload.season_id,
            description=payload.description,
            priority=payload.priority,
        )
    except TableAutomationError as e:
        raise _http_error(e)

    return RecalculationResponse(
        job_id=job["job_id"],
        league_id=job["league_id"],
        season_id=job["season_id"],
        message=f"Table recalculation for league {job['league_id']} queued",
    )


@router.post("/recalculate-all", response_model=RecalculateAllResponse)
async def trigger_all_leagues(
    payload: RecalculateAllRequest,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> RecalculateAllResponse:
    """为所有联赛提交重算任务（同一 worker 池并行执行）"""
    try:
        jobs = await facade.trigger_all_leagues(payload.season_id, description=payload.description)
    except TableAutomationError as e:
        raise _http_error(e)
    return RecalculateAllResponse(total=len(jobs), jobs=[JobRef(**job) for job in jobs])


# ==================== 队列 ====================

@router.get("/queue", response_model=dict)
async def get_queue_status(
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> dict:
    """队列深度、各状态计数、平均耗时、成功率"""
    return facade.get_queue_status()


@router.get("/health", response_model=dict)
async def get_automation_health(
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> dict:
    """自动化引擎健康状态（healthy / degraded / unhealthy）"""
    return await facade.get_health()


@router.get("/history/{league_id}", response_model=JobHistoryResponse)
async def get_job_history(
    league_id: str,
    limit: int = Query(default=50, ge=1, le=500, description="返回条数上限"),
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> JobHistoryResponse:
    history = facade.get_job_history(league_id, limit)
    return JobHistoryResponse(
        league_id=league_id,
        total=len(history),
        history=[JobHistoryEntry(**entry) for entry in history],
    )


@router.get("/jobs/{job_id}", response_model=dict)
async def get_job(
    job_id: str,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> dict:
    job = facade.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job.to_dict()


@router.post("/pause", response_model=AutomationStateResponse)
async def pause_automation(
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> AutomationStateResponse:
    """暂停派发新任务（执行中的任务会正常结束）"""
    await facade.pause_automation()
    logger.info("Table automation paused via API")
    return AutomationStateResponse(paused=True, message="Automation paused")


@router.post("/resume", response_model=AutomationStateResponse)
async def resume_automation(
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> AutomationStateResponse:
    await facade.resume_automation()
    logger.info("Table automation resumed via API")
    return AutomationStateResponse(paused=False, message="Automation resumed")


# ==================== 死信队列 ====================

@router.get("/dead-letter", response_model=DeadLetterResponse)
async def get_dead_letter_jobs(
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> DeadLetterResponse:
    jobs = [DeadLetterJob(**job.to_dict()) for job in facade.get_dead_letter_jobs()]
    return DeadLetterResponse(total=len(jobs), jobs=jobs)


@router.post("/dead-letter/{job_id}/resubmit", response_model=ResubmitResponse)
async def resubmit_dead_letter(
    job_id: str,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> ResubmitResponse:
    try:
        new_job_id = await facade.resubmit_dead_letter(job_id)
    except TableAutomationError as e:
        raise _http_error(e)
    return ResubmitResponse(job_id=new_job_id, message=f"Dead letter job {job_id} resubmitted")


@router.delete("/dead-letter", response_model=dict)
async def clear_dead_letter(
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> dict:
    cleared = await facade.clear_dead_letter()
    return {"success": True, "cleared": cleared}


# ==================== 快照 ====================

@router.get("/snapshots", response_model=SnapshotListResponse)
async def list_snapshots(
    league_id: str = Query(..., min_length=1),
    season_id: str = Query(..., min_length=1),
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> SnapshotListResponse:
    snapshots = await facade.list_snapshots(league_id, season_id)
    return SnapshotListResponse(
        league_id=league_id,
        season_id=season_id,
        total=len(snapshots),
        snapshots=[SnapshotSummary(**s.summary()) for s in snapshots],
    )


@router.post("/snapshots", response_model=CreateSnapshotResponse)
async def create_snapshot(
    payload: CreateSnapshotRequest,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> CreateSnapshotResponse:
    try:
        snapshot_id = await facade.create_snapshot(payload.league_id, payload.season_id, payload.description)
    except OSError as e:
        logger.error(f"Snapshot creation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Snapshot creation failed: {e}")
    return CreateSnapshotResponse(snapshot_id=snapshot_id)


@router.get("/snapshots/{snapshot_id}", response_model=dict)
async def get_snapshot(
    snapshot_id: str,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> dict:
    try:
        snapshot = await facade.get_snapshot(snapshot_id)
    except TableAutomationError as e:
        raise _http_error(e)
    return snapshot.to_dict()


@router.post("/snapshots/{snapshot_id}/restore", response_model=RestoreSnapshotResponse)
async def restore_snapshot(
    snapshot_id: str,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> RestoreSnapshotResponse:
    """
    从快照恢复积分榜

    校验和不一致或写入失败时返回 409，线上表格保持不变。
    """
    try:
        result = await facade.restore_snapshot(snapshot_id)
    except TableAutomationError as e:
        raise _http_error(e)
    return RestoreSnapshotResponse(**result.to_dict())


@router.delete("/snapshots/{snapshot_id}", response_model=dict)
async def delete_snapshot(
    snapshot_id: str,
    facade: AdminOperationsFacade = Depends(get_admin_facade),
) -> dict:
    deleted = await facade.delete_snapshot(snapshot_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Snapshot {snapshot_id} not found")
    return {"success": True, "snapshot_id": snapshot_id}
