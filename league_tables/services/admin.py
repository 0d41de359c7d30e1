"""
AdminOperationsFacade - 运维操作入口

管理端（HTTP 路由、脚本）只通过此类操作自动化引擎：
- 手动触发重算（单个联赛 / 全部联赛，高优先级）
- 队列状态、执行历史、健康检查
- 快照列表 / 创建 / 恢复 / 删除
- 暂停 / 恢复自动化
- 死信任务查看与重新提交

本身不含业务逻辑，只做参数补全与转发。
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from league_tables.services.config import trigger_config
from league_tables.services.errors import LeagueNotFoundError, NoActiveSeasonError
from league_tables.services.schemas import JobPriority

logger = logging.getLogger(__name__)


class AdminOperationsFacade:
    """运维门面"""

    def __init__(self, queue_manager, snapshot_store, repository):
        self._queue = queue_manager
        self._snapshots = snapshot_store
        self._repository = repository

    # ==================== 手动触发 ====================

    async def trigger_recalculation(
        self,
        league_id: str,
        season_id: Optional[str] = None,
        description: Optional[str] = None,
        priority: JobPriority = trigger_config.MANUAL_PRIORITY,
    ) -> Dict[str, Any]:
        """
        手动触发单个联赛的重算

        Raises:
            LeagueNotFoundError: 联赛不存在
            NoActiveSeasonError: 未指定赛季且没有当前赛季
        """
        if not await self._repository.league_exists(league_id):
            raise LeagueNotFoundError(f"League {league_id} not found", league_id=league_id)
        season_id = await self._resolve_season(season_id)

        job_id = await self._queue.add_job(
            league_id,
            season_id,
            JobPriority.parse(priority),
            trigger="manual",
            description=description or f"Manual recalculation for league {league_id}",
        )
        logger.info(
            f"Manual table recalculation triggered for {league_id}/{season_id}",
            extra={"league_id": league_id, "season_id": season_id, "job_id": job_id},
        )
        return {"job_id": job_id, "league_id": league_id, "season_id": season_id}

    async def trigger_all_leagues(
        self,
        season_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """为每个联赛提交一个高优先级任务，由同一个 worker 池并行执行"""
        season_id = await self._resolve_season(season_id)
        leagues = await self._repository.list_leagues()

        jobs = []
        for league_id in leagues:
            job_id = await self._queue.add_job(
                league_id,
                season_id,
                trigger_config.MANUAL_PRIORITY,
                trigger="manual_all",
                description=description or f"Manual recalculation of all leagues for season {season_id}",
            )
            jobs.append({"job_id": job_id, "league_id": league_id, "season_id": season_id})

        logger.info(f"Triggered recalculation for {len(jobs)} leagues in season {season_id}")
        return jobs

    # ==================== 队列 ====================

    def get_queue_status(self) -> Dict[str, Any]:
        return self._queue.get_queue_status()

    def get_job(self, job_id: str):
        return self._queue.get_job(job_id)

    def get_job_history(self, league_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        return self._queue.get_job_history(league_id, limit)

    async def pause_automation(self) -> None:
        await self._queue.pause()

    async def resume_automation(self) -> None:
        await self._queue.resume()

    def get_dead_letter_jobs(self):
        return self._queue.get_dead_letter_jobs()

    async def resubmit_dead_letter(self, job_id: str) -> str:
        return await self._queue.resubmit_dead_letter(job_id)

    async def clear_dead_letter(self) -> int:
        return await self._queue.clear_dead_letter()

    # ==================== 快照 ====================

    async def list_snapshots(self, league_id: str, season_id: str):
        return await self._snapshots.list_snapshots(league_id, season_id)

    async def get_snapshot(self, snapshot_id: str):
        return await self._snapshots.get_snapshot(snapshot_id)

    async def create_snapshot(self, league_id: str, season_id: str, description: str = "") -> str:
        async with self._queue.key_lock(league_id, season_id):
            return await self._snapshots.create_snapshot(
                league_id, season_id, description or "Manual snapshot"
            )

    async def restore_snapshot(self, snapshot_id: str):
        """在联赛赛季锁内恢复快照，与该表的重算任务互斥"""
        snapshot = await self._snapshots.get_snapshot(snapshot_id)
        async with self._queue.key_lock(snapshot.league_id, snapshot.season_id):
            result = await self._snapshots.restore_snapshot(snapshot_id)
        logger.info(
            f"Snapshot {snapshot_id} restored by operator",
            extra={"snapshot_id": snapshot_id, "league_id": snapshot.league_id, "season_id": snapshot.season_id},
        )
        return result

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        return await self._snapshots.delete_snapshot(snapshot_id)

    # ==================== 健康检查 ====================

    async def get_health(self) -> Dict[str, Any]:
        """队列健康 + 数据库连通性 + 快照目录"""
        queue_health = self._queue.get_health_status()
        components = [{
            "name": "queue",
            "status": "up" if queue_health["status"] == "healthy" else queue_health["status"],
            "issues": queue_health["issues"],
        }]
        status = queue_health["status"]

        try:
            await self._repository.ping()
            components.append({"name": "database", "status": "up"})
        except Exception as exc:
            logger.error(f"Database health check failed: {exc}")
            components.append({"name": "database", "status": "down", "message": str(exc)})
            status = "unhealthy"

        directory = self._snapshots.directory
        if directory.exists() and not directory.is_dir():
            components.append({"name": "snapshots", "status": "down",
                               "message": f"{directory} is not a directory"})
            if status == "healthy":
                status = "degraded"
        else:
            components.append({"name": "snapshots", "status": "up"})

        return {
            "status": status,
            "components": components,
            "queue": queue_health,
        }

    # ==================== 内部工具 ====================

    async def _resolve_season(self, season_id: Optional[str]) -> str:
        if season_id:
            return season_id
        active = await self._repository.get_active_season()
        if active is None:
            raise NoActiveSeasonError("No season given and no active season found")
        return active
