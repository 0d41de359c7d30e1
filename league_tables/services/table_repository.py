"""
TableRepository - 积分榜数据访问层

职责：
1. 读取某 联赛+赛季 的比赛结果与参赛球队（外部数据源，只读）
2. 读取线上积分榜
3. 在一个事务内整体替换积分榜（删除 + 插入，要么全部成功要么全部回滚）
4. 解析当前赛季、列出联赛

注意：
- 会话工厂显式注入，不使用全局会话
- 数据库异常原样抛出，由队列统一归类（瞬时错误会被重试）
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from league_tables.infra.db.models import League, Match, Season, TableEntry, Team
from league_tables.services.errors import CalculationError
from league_tables.services.schemas import MatchResult, TableRow, TeamInfo

logger = logging.getLogger(__name__)


class TableRepository:
    """
    积分榜仓储

    所有写操作使用 `async with session.begin()`，事务内任一步失败都会整体回滚，
    读者永远看不到半张表。
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    # ==================== 比赛相关 ====================

    async def get_matches(self, league_id: str, season_id: str) -> List[MatchResult]:
        """
        获取某联赛赛季的全部比赛（含未结束的）

        Returns:
            按轮次、比赛 ID 排序的比赛列表
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Match)
                .options(selectinload(Match.home_team), selectinload(Match.away_team))
                .where(Match.league_id == league_id, Match.season_id == season_id)
                .order_by(Match.matchday, Match.match_id)
            )
            return [MatchResult.from_orm(m) for m in result.scalars().all()]

    async def get_participants(self, league_id: str, season_id: str) -> List[TeamInfo]:
        """
        获取参赛球队

        只取本赛季比赛中出现过的球队；赛季没有比赛时返回空列表（积分榜随之为空）。
        """
        async with self._session_factory() as session:
            in_season = (
                select(Match.home_team_id.label("team_id"))
                .where(Match.league_id == league_id, Match.season_id == season_id)
                .union(
                    select(Match.away_team_id.label("team_id"))
                    .where(Match.league_id == league_id, Match.season_id == season_id)
                )
                .subquery()
            )
            result = await session.execute(
                select(Team).where(Team.team_id.in_(select(in_season.c.team_id))).order_by(Team.team_name)
            )
            return [TeamInfo(team_id=t.team_id, team_name=t.team_name) for t in result.scalars().all()]

    # ==================== 积分榜相关 ====================

    async def get_table(self, league_id: str, season_id: str) -> List[TableRow]:
        """读取线上积分榜（按名次排序）"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(TableEntry)
                .where(TableEntry.league_id == league_id, TableEntry.season_id == season_id)
                .order_by(TableEntry.position, TableEntry.team_id)
            )
            return [TableRow.from_orm(e) for e in result.scalars().all()]

    async def replace_table(self, league_id: str, season_id: str, rows: Sequence[TableRow]) -> int:
        """
        整体替换积分榜

        Args:
            league_id: 联赛 ID
            season_id: 赛季 ID
            rows: 新的整张表

        Returns:
            写入的行数

        Raises:
            CalculationError: 行数据不属于该联赛赛季或球队重复
        """
        self._check_rows(league_id, season_id, rows)

        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(TableEntry).where(
                        TableEntry.league_id == league_id,
                        TableEntry.season_id == season_id,
                    )
                )
                session.add_all([self._to_entry(row) for row in rows])

        logger.info(
            f"Replaced table {league_id}/{season_id} with {len(rows)} rows",
            extra={"league_id": league_id, "season_id": season_id, "entries": len(rows)},
        )
        return len(rows)

    # ==================== 联赛 / 赛季 ====================

    async def get_active_season(self) -> Optional[str]:
        """获取当前赛季 ID（多个时取年份最新的）"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Season.season_id)
                .where(Season.is_active.is_(True))
                .order_by(Season.year.desc(), Season.season_id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_leagues(self) -> List[str]:
        """列出所有联赛 ID"""
        async with self._session_factory() as session:
            result = await session.execute(select(League.league_id).order_by(League.league_id))
            return list(result.scalars().all())

    async def league_exists(self, league_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(League.league_id).where(League.league_id == league_id))
            return result.scalar_one_or_none() is not None

    async def ping(self) -> None:
        """数据库连通性检查（健康检查用）"""
        async with self._session_factory() as session:
            await session.execute(select(1))

    # ==================== 内部工具 ====================

    @staticmethod
    def _check_rows(league_id: str, season_id: str, rows: Sequence[TableRow]) -> None:
        seen = set()
        for row in rows:
            if row.league_id != league_id or row.season_id != season_id:
                raise CalculationError(
                    f"Row for team {row.team_id} belongs to {row.league_id}/{row.season_id}",
                    league_id=league_id,
                    season_id=season_id,
                )
            if row.team_id in seen:
                raise CalculationError(
                    f"Duplicate team {row.team_id} in table",
                    league_id=league_id,
                    season_id=season_id,
                )
            seen.add(row.team_id)

    @staticmethod
    def _to_entry(row: TableRow) -> TableEntry:
        return TableEntry(
            league_id=row.league_id,
            season_id=row.season_id,
            team_id=row.team_id,
            team_name=row.team_name,
            position=row.position,
            played_games=row.played,
            won=row.wins,
            draw=row.draws,
            lost=row.losses,
            goals_for=row.goals_for,
            goals_against=row.goals_against,
            goal_difference=row.goal_difference,
            points=row.points,
            auto_calculated=row.auto_calculated,
            calculation_source=row.calculation_source,
        )
