"""
Pytest 配置文件

提供测试固件和通用配置：
1. 比赛 / 积分榜数据工厂
2. SQLite（aiosqlite）临时数据库，用于真实事务测试
3. 可控时钟与内存审计日志
4. HTTP 客户端固件
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from league_tables.infra.db.models import League, Match, Season, Team
from league_tables.infra.db.session import create_engine, create_schema, create_session_factory, dispose_engine
from league_tables.services.audit import MemoryAuditTrail
from league_tables.services.schemas import MatchResult, TableRow
from league_tables.shared.config import BackoffConfig, DbConnection, QueueConfig, SnapshotConfig

# 设置测试环境
os.environ.setdefault("ENVIRONMENT", "test")


# ============ 时钟 ============

class FakeClock:
    """
    可控时钟

    每次调用返回当前时间后前进 step（默认 1 秒），保证时间戳严格递增；
    step=0 时为固定时钟，可用 advance() 手动拨动。
    """

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_audit(clock) -> MemoryAuditTrail:
    return MemoryAuditTrail(clock=clock)


# ============ 配置 ============

@pytest.fixture
def queue_config() -> QueueConfig:
    """测试用队列配置：退避极短、无抖动"""
    return QueueConfig(
        concurrency=3,
        max_retries=3,
        job_timeout_seconds=2.0,
        backoff=BackoffConfig(base_delay_seconds=0.001, max_delay_seconds=0.01, jitter=False),
    )


@pytest.fixture
def snapshot_config(tmp_path) -> SnapshotConfig:
    return SnapshotConfig(storage_directory=str(tmp_path / "snapshots"), max_snapshots=10, max_age_days=30)


# ============ 数据工厂 ============

@pytest.fixture
def make_match() -> Callable[..., MatchResult]:
    """
    比赛工厂

    make_match("t1", "t2", 2, 1) → BL1/2024 的已结束比赛
    """
    counter = {"n": 0}

    def _make(
        home: str,
        away: str,
        home_goals: Optional[int] = None,
        away_goals: Optional[int] = None,
        status: Optional[str] = None,
        league_id: str = "BL1",
        season_id: str = "2024",
        matchday: Optional[int] = 1,
        match_id: Optional[str] = None,
    ) -> MatchResult:
        counter["n"] += 1
        if status is None:
            status = "finished" if home_goals is not None and away_goals is not None else "planned"
        return MatchResult(
            match_id=match_id or f"m{counter['n']}",
            league_id=league_id,
            season_id=season_id,
            home_team_id=home,
            away_team_id=away,
            status=status,
            home_goals=home_goals,
            away_goals=away_goals,
            matchday=matchday,
            home_team_name=home.upper(),
            away_team_name=away.upper(),
        )

    return _make


@pytest.fixture
def sample_rows() -> List[TableRow]:
    """示例积分榜"""
    return [
        TableRow("BL1", "2024", "t1", "Alpha", position=1, played=2, wins=2, goals_for=5,
                 goals_against=1, goal_difference=4, points=6),
        TableRow("BL1", "2024", "t2", "Bravo", position=2, played=2, wins=1, losses=1, goals_for=3,
                 goals_against=3, goal_difference=0, points=3),
        TableRow("BL1", "2024", "t3", "Charlie", position=3, played=2, losses=1, draws=1, goals_for=1,
                 goals_against=3, goal_difference=-2, points=1),
        TableRow("BL1", "2024", "t4", "Delta", position=4, played=2, losses=1, draws=1, goals_for=1,
                 goals_against=3, goal_difference=-2, points=1),
    ]


# ============ 数据库相关 ============

@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator:
    """
    SQLite 临时数据库引擎（文件库，支持多连接与真实事务）
    """
    engine = create_engine(DbConnection(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))
    await create_schema(engine)
    yield engine
    await dispose_engine(engine)


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def seed(session_factory) -> Callable:
    """
    写入联赛 / 赛季 / 球队 / 比赛

    await seed(teams={"t1": "Alpha", ...}, matches=[("t1", "t2", 2, 1), ...])
    """

    async def _seed(
        teams: dict,
        matches: list,
        league_id: str = "BL1",
        season_id: str = "2024",
        season_active: bool = True,
    ) -> None:
        async with session_factory() as session:
            async with session.begin():
                if await session.get(League, league_id) is None:
                    session.add(League(league_id=league_id, league_name=f"League {league_id}"))
                if await session.get(Season, season_id) is None:
                    session.add(Season(season_id=season_id, name=season_id, year=int(season_id[:4]),
                                       is_active=season_active))
                for team_id, name in teams.items():
                    if await session.get(Team, team_id) is None:
                        session.add(Team(team_id=team_id, team_name=name, league_id=league_id))

        async with session_factory() as session:
            async with session.begin():
                for index, (home, away, home_goals, away_goals) in enumerate(matches, start=1):
                    finished = home_goals is not None and away_goals is not None
                    session.add(Match(
                        match_id=f"{league_id}-{season_id}-{index}",
                        league_id=league_id,
                        season_id=season_id,
                        home_team_id=home,
                        away_team_id=away,
                        matchday=index,
                        status="finished" if finished else "planned",
                        home_score=home_goals,
                        away_score=away_goals,
                    ))

    return _seed


# ============ Mock 组件 ============

@pytest.fixture
def mock_repository() -> MagicMock:
    """Mock TableRepository（单元测试不连接数据库）"""
    repository = MagicMock()
    repository.get_matches = AsyncMock(return_value=[])
    repository.get_participants = AsyncMock(return_value=[])
    repository.get_table = AsyncMock(return_value=[])
    repository.replace_table = AsyncMock(side_effect=lambda league, season, rows: len(rows))
    repository.get_active_season = AsyncMock(return_value="2024")
    repository.list_leagues = AsyncMock(return_value=["BL1", "BL2"])
    repository.league_exists = AsyncMock(return_value=True)
    repository.ping = AsyncMock(return_value=None)
    return repository


@pytest.fixture
def mock_queue() -> MagicMock:
    """Mock QueueManager"""
    queue = MagicMock()
    counter = {"n": 0}

    async def _add_job(league_id, season_id, priority=None, trigger="manual", description=None):
        counter["n"] += 1
        return f"job-{counter['n']}"

    queue.add_job = AsyncMock(side_effect=_add_job)
    queue.pause = AsyncMock()
    queue.resume = AsyncMock()
    queue.resubmit_dead_letter = AsyncMock(return_value="job-resubmitted")
    queue.clear_dead_letter = AsyncMock(return_value=0)
    queue.get_dead_letter_jobs.return_value = []
    queue.get_job_history.return_value = []
    queue.get_job.return_value = None
    queue.get_queue_status.return_value = {"queue_depth": 0, "pending_jobs": 0, "is_paused": False}
    queue.get_health_status.return_value = {"status": "healthy", "issues": []}
    return queue


# ============ HTTP 客户端 ============

@pytest.fixture
def mock_admin_facade() -> MagicMock:
    """Mock AdminOperationsFacade（API 层测试不执行真实重算）"""
    facade = MagicMock()
    facade.trigger_recalculation = AsyncMock(
        return_value={"job_id": "job-1", "league_id": "BL1", "season_id": "2024"}
    )
    facade.trigger_all_leagues = AsyncMock(return_value=[
        {"job_id": "job-1", "league_id": "BL1", "season_id": "2024"},
        {"job_id": "job-2", "league_id": "BL2", "season_id": "2024"},
    ])
    facade.get_queue_status.return_value = {"queue_depth": 0, "pending_jobs": 0, "is_paused": False}
    facade.get_health = AsyncMock(return_value={"status": "healthy", "components": [], "queue": {}})
    facade.get_job_history.return_value = []
    facade.get_job.return_value = None
    facade.pause_automation = AsyncMock()
    facade.resume_automation = AsyncMock()
    facade.get_dead_letter_jobs.return_value = []
    facade.resubmit_dead_letter = AsyncMock(return_value="job-9")
    facade.clear_dead_letter = AsyncMock(return_value=0)
    facade.list_snapshots = AsyncMock(return_value=[])
    facade.create_snapshot = AsyncMock(return_value="snapshot_BL1_2024_x")
    facade.get_snapshot = AsyncMock()
    facade.restore_snapshot = AsyncMock()
    facade.delete_snapshot = AsyncMock(return_value=True)
    return facade


@pytest.fixture
def lifecycle_adapter(mock_queue):
    """使用真实校验器、Mock 队列的生命周期适配器"""
    from league_tables.services.lifecycle import MatchLifecycleAdapter
    from league_tables.services.validation import MatchValidator

    return MatchLifecycleAdapter(MatchValidator(), mock_queue)


@pytest_asyncio.fixture
async def client(mock_admin_facade, lifecycle_adapter) -> AsyncGenerator:
    """
    FastAPI 测试客户端

    使用 httpx.AsyncClient + ASGITransport；门面与生命周期适配器通过 dependency_overrides 注入
    """
    from httpx import ASGITransport, AsyncClient

    from league_tables.services.api.dependencies import get_admin_facade, get_lifecycle_adapter
    from league_tables.services.api.main import app

    app.dependency_overrides[get_admin_facade] = lambda: mock_admin_facade
    app.dependency_overrides[get_lifecycle_adapter] = lambda: lifecycle_adapter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
