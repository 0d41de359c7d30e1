"""
积分榜自动化的领域数据结构

- MatchResult: 外部比赛记录的只读视图
- TableRow: 积分榜中的一行
- JobPriority / MatchStatus: 枚举
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional


class MatchStatus(str, Enum):
    PLANNED = "planned"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


class JobPriority(IntEnum):
    """数值越大越先调度"""
    LOW = 1
    NORMAL = 2
    HIGH = 3

    @classmethod
    def parse(cls, value: "JobPriority | str | int") -> "JobPriority":
        if isinstance(value, JobPriority):
            return value
        if isinstance(value, str):
            return cls[value.strip().upper()]
        return cls(value)


@dataclass(frozen=True)
class LeagueSeasonKey:
    """联赛+赛季：一张独立积分榜的标识，锁与去重都以此为粒度"""
    league_id: str
    season_id: str

    def __str__(self) -> str:
        return f"{self.league_id}/{self.season_id}"


@dataclass
class MatchResult:
    """比赛结果（来自外部数据源的一致性快照）"""
    match_id: Optional[str]
    league_id: Optional[str]
    season_id: Optional[str]
    home_team_id: Optional[str]
    away_team_id: Optional[str]
    status: str = MatchStatus.PLANNED.value
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None
    matchday: Optional[int] = None
    home_team_name: Optional[str] = None
    away_team_name: Optional[str] = None

    @property
    def key(self) -> LeagueSeasonKey:
        return LeagueSeasonKey(str(self.league_id), str(self.season_id))

    @property
    def is_finished(self) -> bool:
        """状态为 finished 且两队比分齐全"""
        return (
            self.status == MatchStatus.FINISHED.value
            and self.home_goals is not None
            and self.away_goals is not None
        )

    @classmethod
    def from_orm(cls, match: Any) -> "MatchResult":
        """从 ORM Match 对象构造（球队关系需预加载）"""
        home = getattr(match, "home_team", None)
        away = getattr(match, "away_team", None)
        return cls(
            match_id=match.match_id,
            league_id=match.league_id,
            season_id=match.season_id,
            home_team_id=match.home_team_id,
            away_team_id=match.away_team_id,
            status=match.status,
            home_goals=match.home_score,
            away_goals=match.away_score,
            matchday=match.matchday,
            home_team_name=home.team_name if home is not None else None,
            away_team_name=away.team_name if away is not None else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TableRow:
    """积分榜的一行"""
    league_id: str
    season_id: str
    team_id: str
    team_name: str
    position: int = 0
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    points: int = 0
    auto_calculated: bool = True
    calculation_source: str = "automatic"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableRow":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})

    @classmethod
    def from_orm(cls, entry: Any) -> "TableRow":
        return cls(
            league_id=entry.league_id,
            season_id=entry.season_id,
            team_id=entry.team_id,
            team_name=entry.team_name,
            position=entry.position,
            played=entry.played_games,
            wins=entry.won,
            draws=entry.draw,
            losses=entry.lost,
            goals_for=entry.goals_for,
            goals_against=entry.goals_against,
            goal_difference=entry.goal_difference,
            points=entry.points,
            auto_calculated=bool(entry.auto_calculated),
            calculation_source=entry.calculation_source or "automatic",
        )


def serialize_rows(rows: Iterable[TableRow]) -> bytes:
    """
    积分榜的规范字节表示

    用于校验和计算与“字节级一致”的比较：键排序、无多余空白、按名次排列。
    """
    payload: List[dict] = [row.to_dict() for row in sorted(rows, key=lambda r: r.position)]
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass
class TeamInfo:
    """参赛球队（用于零场次补齐）"""
    team_id: str
    team_name: str


@dataclass
class RecalculationOutcome:
    """一次重算的结果摘要"""
    league_id: str
    season_id: str
    entries_updated: int
    matches_counted: int
    snapshot_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
