"""
StandingsCalculator - 积分榜计算

职责：
1. 基于一个 联赛+赛季 的比赛集合计算完整积分榜
2. 不直接访问数据库（数据由 TableRepository 提供）
3. 确定性排序：积分 > 净胜球 > 进球数 > 队名（升序）

注意：
- 纯函数，幂等：相同输入总是得到字节级一致的输出（重试与快照比对依赖此性质）
- 未结束的比赛不计入统计，但其球队仍以全零数据出现在表中
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from league_tables.services.config import standings_config
from league_tables.services.errors import CalculationError
from league_tables.services.schemas import MatchResult, TableRow, TeamInfo

logger = logging.getLogger(__name__)


@dataclass
class _TeamTotals:
    """单队累计数据"""
    team_id: str
    team_name: str
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0

    def record(self, scored: int, conceded: int) -> None:
        self.played += 1
        self.goals_for += scored
        self.goals_against += conceded
        if scored > conceded:
            self.wins += 1
        elif scored == conceded:
            self.draws += 1
        else:
            self.losses += 1


def _sort_key(row: TableRow) -> Tuple[int, int, int, str, str]:
    # 队名比较忽略大小写，再以原始队名兜底，保证全序
    return (-row.points, -row.goal_difference, -row.goals_for, row.team_name.casefold(), row.team_name)


class StandingsCalculator:
    """
    积分榜计算器

    算法：
    - 单次遍历累加各队胜平负与进失球
    - 推导净胜球与积分（胜3平1负0）
    - 稳定排序后赋予 1 起始的名次
    """

    def __init__(self, config=standings_config):
        self._config = config

    def calculate(
        self,
        matches: Iterable[MatchResult],
        teams: Optional[Iterable[TeamInfo]] = None,
        league_id: Optional[str] = None,
        season_id: Optional[str] = None,
    ) -> List[TableRow]:
        """
        计算积分榜

        Args:
            matches: 同一联赛+赛季的比赛（未结束的比赛只用于补齐球队）
            teams: 额外的参赛球队（无比赛也以零数据出现）
            league_id: 联赛 ID（为空时从比赛推断）
            season_id: 赛季 ID（为空时从比赛推断）

        Returns:
            排好序的积分榜

        Raises:
            CalculationError: 比赛跨联赛/赛季，或已结束比赛的比分形态异常
        """
        start = time.perf_counter()
        match_list = list(matches)
        league_id, season_id = self._resolve_key(match_list, league_id, season_id)

        totals: Dict[str, _TeamTotals] = {}

        # 先登记显式给出的球队（文档顺序以此为先）
        for team in teams or ():
            self._ensure_team(totals, team.team_id, team.team_name)

        counted = 0
        for match in match_list:
            home = self._ensure_team(totals, match.home_team_id, match.home_team_name)
            away = self._ensure_team(totals, match.away_team_id, match.away_team_name)

            if not match.is_finished:
                continue

            home_goals, away_goals = self._checked_score(match)
            home.record(home_goals, away_goals)
            away.record(away_goals, home_goals)
            counted += 1

        rows = [self._to_row(t, league_id, season_id) for t in totals.values()]
        ordered = self.sort_rows(rows)

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > self._config.WARNING_THRESHOLD_MS:
            logger.warning(
                f"Standings calculation for {league_id}/{season_id} took {elapsed_ms:.0f}ms",
                extra={"league_id": league_id, "season_id": season_id, "duration_ms": elapsed_ms},
            )
        logger.debug(f"Calculated {len(ordered)} rows from {counted} finished matches for {league_id}/{season_id}")
        return ordered

    # ==================== 排序 ====================

    @staticmethod
    def sort_rows(rows: Iterable[TableRow]) -> List[TableRow]:
        """按 积分 > 净胜球 > 进球 > 队名 排序并重新编号名次（稳定排序）"""
        ordered = sorted(rows, key=_sort_key)
        for index, row in enumerate(ordered, start=1):
            row.position = index
        return ordered

    # ==================== 一致性检查 ====================

    def check_consistency(self, rows: Iterable[TableRow]) -> List[str]:
        """
        检查整张表的守恒关系

        - 全表胜场数 == 负场数
        - 全表进球 == 失球
        - 平局场次为偶数
        - 每队 场次 = 胜 + 平 + 负，积分 = 胜×3 + 平×1
        """
        row_list = list(rows)
        problems: List[str] = []
        wins = sum(r.wins for r in row_list)
        losses = sum(r.losses for r in row_list)
        draws = sum(r.draws for r in row_list)
        goals_for = sum(r.goals_for for r in row_list)
        goals_against = sum(r.goals_against for r in row_list)

        if wins != losses:
            problems.append(f"wins ({wins}) != losses ({losses})")
        if goals_for != goals_against:
            problems.append(f"goals_for ({goals_for}) != goals_against ({goals_against})")
        if draws % 2:
            problems.append(f"odd number of draw entries ({draws})")
        for row in row_list:
            if row.played != row.wins + row.draws + row.losses:
                problems.append(f"{row.team_name}: played != W+D+L")
            expected = (
                row.wins * self._config.POINTS_PER_WIN
                + row.draws * self._config.POINTS_PER_DRAW
                + row.losses * self._config.POINTS_PER_LOSS
            )
            if row.points != expected:
                problems.append(f"{row.team_name}: points {row.points} != {expected}")
        return problems

    # ==================== 内部工具 ====================

    @staticmethod
    def _resolve_key(
        matches: List[MatchResult],
        league_id: Optional[str],
        season_id: Optional[str],
    ) -> Tuple[str, str]:
        leagues = {m.league_id for m in matches}
        seasons = {m.season_id for m in matches}
        if league_id is not None:
            leagues.add(league_id)
        if season_id is not None:
            seasons.add(season_id)

        if len(leagues) > 1 or len(seasons) > 1:
            raise CalculationError(
                "Matches span more than one league/season",
                leagues=sorted(str(x) for x in leagues),
                seasons=sorted(str(x) for x in seasons),
            )
        resolved_league = next(iter(leagues), None) or ""
        resolved_season = next(iter(seasons), None) or ""
        return str(resolved_league), str(resolved_season)

    @staticmethod
    def _ensure_team(totals: Dict[str, _TeamTotals], team_id: Optional[str], team_name: Optional[str]) -> _TeamTotals:
        if team_id is None:
            raise CalculationError("Match references a team without id")
        entry = totals.get(team_id)
        if entry is None:
            entry = _TeamTotals(team_id=team_id, team_name=team_name or team_id)
            totals[team_id] = entry
        elif team_name and entry.team_name == entry.team_id:
            # 之前只知道 ID，现在补上队名
            entry.team_name = team_name
        return entry

    @staticmethod
    def _checked_score(match: MatchResult) -> Tuple[int, int]:
        home, away = match.home_goals, match.away_goals
        for value in (home, away):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise CalculationError(
                    f"Finished match {match.match_id} has an invalid score {home!r}:{away!r}",
                    match_id=match.match_id,
                )
        if match.home_team_id == match.away_team_id:
            raise CalculationError(
                f"Finished match {match.match_id} has identical teams",
                match_id=match.match_id,
            )
        return home, away

    def _to_row(self, totals: _TeamTotals, league_id: str, season_id: str) -> TableRow:
        points = (
            totals.wins * self._config.POINTS_PER_WIN
            + totals.draws * self._config.POINTS_PER_DRAW
            + totals.losses * self._config.POINTS_PER_LOSS
        )
        return TableRow(
            league_id=league_id,
            season_id=season_id,
            team_id=totals.team_id,
            team_name=totals.team_name,
            played=totals.played,
            wins=totals.wins,
            draws=totals.draws,
            losses=totals.losses,
            goals_for=totals.goals_for,
            goals_against=totals.goals_against,
            goal_difference=totals.goals_for - totals.goals_against,
            points=points,
            auto_calculated=True,
            calculation_source="automatic",
        )

