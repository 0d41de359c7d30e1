"""
TableRecalculationService - 单个联赛赛季的重算流程

流程（由 QueueManager 在联赛赛季锁内调用）：
1. 保存重算前快照
2. 读取比赛与参赛球队
3. 计算积分榜并做守恒检查
4. 事务内整体替换线上积分榜
"""
from __future__ import annotations

import logging
from typing import Optional

from league_tables.services.errors import CalculationError
from league_tables.services.schemas import RecalculationOutcome
from league_tables.services.standings_calculator import StandingsCalculator
from league_tables.shared.config import FeatureFlags

logger = logging.getLogger(__name__)


class TableRecalculationService:
    """积分榜重算服务"""

    def __init__(
        self,
        repository,
        calculator: Optional[StandingsCalculator] = None,
        snapshot_store=None,
        features: Optional[FeatureFlags] = None,
    ):
        self._repository = repository
        self._calculator = calculator or StandingsCalculator()
        self._snapshot_store = snapshot_store
        self._features = features or FeatureFlags()

    async def recalculate(
        self,
        league_id: str,
        season_id: str,
        job_id: Optional[str] = None,
    ) -> RecalculationOutcome:
        """
        重算一个联赛赛季的积分榜

        Raises:
            CalculationError: 比赛数据异常或结果不守恒（线上表格不变）
            TransientInfrastructureError 及数据库异常: 由队列重试
        """
        snapshot_id = None
        if self._snapshot_store is not None and self._features.snapshot_creation:
            snapshot_id = await self._snapshot_store.create_snapshot(
                league_id,
                season_id,
                description=f"Pre-calculation snapshot for job {job_id or 'manual'}",
            )

        matches = await self._repository.get_matches(league_id, season_id)
        teams = await self._repository.get_participants(league_id, season_id)
        rows = self._calculator.calculate(matches, teams, league_id=league_id, season_id=season_id)

        problems = self._calculator.check_consistency(rows)
        if problems:
            raise CalculationError(
                f"Inconsistent table for {league_id}/{season_id}: {'; '.join(problems)}",
                league_id=league_id,
                season_id=season_id,
                job_id=job_id,
            )

        updated = await self._repository.replace_table(league_id, season_id, rows)
        counted = sum(1 for m in matches if m.is_finished)

        logger.info(
            f"Recalculated {league_id}/{season_id}: {updated} entries from {counted} matches",
            extra={"league_id": league_id, "season_id": season_id, "job_id": job_id,
                   "snapshot_id": snapshot_id},
        )
        return RecalculationOutcome(
            league_id=league_id,
            season_id=season_id,
            entries_updated=updated,
            matches_counted=counted,
            snapshot_id=snapshot_id,
        )

    async def run_job(self, job) -> RecalculationOutcome:
        """QueueManager 的执行函数"""
        return await self.recalculate(job.league_id, job.season_id, job_id=job.job_id)
