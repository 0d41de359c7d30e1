"""数据库实体定义：赛事数据域 (外部 CMS 所有) + 积分榜自动化域。"""
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

# ===========================
# 1. 赛事数据域 (Core Domain)
# 由外部 CMS 维护，自动化引擎只读
# ===========================
class League(Base):
    __tablename__ = "leagues"
    league_id = Column(String, primary_key=True, index=True)
    league_name = Column(String, nullable=False)
    country = Column(String)
    level = Column(Integer, default=1)
    teams = relationship("Team", back_populates="league")


class Season(Base):
    __tablename__ = "seasons"
    season_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    year = Column(Integer)
    # 当前赛季（管理端手动触发时未指定赛季则使用）
    is_active = Column(Boolean, default=False, nullable=False)


class Team(Base):
    __tablename__ = "teams"
    team_id = Column(String, primary_key=True, index=True)
    team_name = Column(String, nullable=False)
    league_id = Column(String, ForeignKey("leagues.league_id"))
    league = relationship("League", back_populates="teams")


class Match(Base):
    __tablename__ = "matches"
    match_id = Column(String, primary_key=True, index=True)
    league_id = Column(String, ForeignKey("leagues.league_id"), index=True)
    season_id = Column(String, ForeignKey("seasons.season_id"), index=True)
    home_team_id = Column(String, ForeignKey("teams.team_id"), nullable=False)
    away_team_id = Column(String, ForeignKey("teams.team_id"), nullable=False)
    match_date = Column(DateTime(timezone=True))
    matchday = Column(Integer, nullable=True)
    # planned / finished / cancelled / postponed
    status = Column(String, default="planned", nullable=False)

    # 基础比分（比赛结束前为空）
    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)

    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])
    league = relationship("League")

    __table_args__ = (
        CheckConstraint('home_score >= 0', name='check_home_pos'),
        CheckConstraint('away_score >= 0', name='check_away_pos'),
        CheckConstraint('home_team_id != away_team_id', name='check_diff_teams'),
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


# ===========================
# 2. 积分榜自动化域 (Table Domain)
# ===========================
class TableEntry(Base):
    """积分榜表：每个 联赛+赛季 的整张表在一个事务内整体替换"""
    __tablename__ = "table_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(String, ForeignKey("leagues.league_id"), index=True, nullable=False)
    season_id = Column(String, ForeignKey("seasons.season_id"), index=True, nullable=False)
    team_id = Column(String, ForeignKey("teams.team_id"), index=True, nullable=False)
    team_name = Column(String, nullable=False)  # 冗余字段，方便查询

    # 排名信息
    position = Column(Integer, nullable=False)
    played_games = Column(Integer, default=0, nullable=False)
    won = Column(Integer, default=0, nullable=False)
    draw = Column(Integer, default=0, nullable=False)
    lost = Column(Integer, default=0, nullable=False)

    # 进球数据
    goals_for = Column(Integer, default=0, nullable=False)
    goals_against = Column(Integer, default=0, nullable=False)
    goal_difference = Column(Integer, default=0, nullable=False)

    # 积分
    points = Column(Integer, default=0, nullable=False)

    # 自动计算 vs 手工编辑
    auto_calculated = Column(Boolean, default=True, nullable=False)
    calculation_source = Column(String, default="automatic")

    team = relationship("Team")
    league = relationship("League")

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('league_id', 'season_id', 'team_id', name='uq_table_entry_team'),
        CheckConstraint('points >= 0', name='check_points_positive'),
        CheckConstraint('played_games >= 0', name='check_games_positive'),
    )


class AuditLogEntry(Base):
    """审计日志：任务状态流转与快照操作，只追加不修改"""
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category = Column(String, nullable=False, index=True)  # 'job' | 'snapshot'
    action = Column(String, nullable=False)
    league_id = Column(String, index=True)
    season_id = Column(String)
    subject_id = Column(String, index=True)  # job_id 或 snapshot_id
    detail = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
