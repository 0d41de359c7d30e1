"""
TableRecalculationService 单元测试

测试覆盖：
1. 重算流程：快照 → 读取 → 计算 → 替换
2. 功能开关关闭时不建快照
3. 守恒检查失败 → CalculationError，表格不写入
4. 数据库异常原样抛出（交给队列重试）
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from league_tables.services.errors import CalculationError, is_retryable
from league_tables.services.recalculation import TableRecalculationService
from league_tables.services.schemas import TableRow, TeamInfo
from league_tables.shared.config import FeatureFlags

pytestmark = pytest.mark.asyncio


@pytest.fixture
def snapshot_store():
    store = MagicMock()
    store.create_snapshot = AsyncMock(return_value="snapshot_BL1_2024_a")
    return store


class TestRecalculate:
    """测试重算流程"""

    async def test_recalculate_replaces_table(self, mock_repository, snapshot_store, make_match):
        mock_repository.get_matches = AsyncMock(return_value=[
            make_match("t1", "t2", 3, 1),
            make_match("t2", "t3"),
        ])
        mock_repository.get_participants = AsyncMock(return_value=[
            TeamInfo("t1", "Alpha"), TeamInfo("t2", "Bravo"), TeamInfo("t3", "Charlie"),
        ])
        service = TableRecalculationService(mock_repository, snapshot_store=snapshot_store)

        outcome = await service.recalculate("BL1", "2024", job_id="job-1")

        assert outcome.entries_updated == 3
        assert outcome.matches_counted == 1
        assert outcome.snapshot_id == "snapshot_BL1_2024_a"
        league_id, season_id, rows = mock_repository.replace_table.await_args.args
        assert (league_id, season_id) == ("BL1", "2024")
        assert [r.team_id for r in rows] == ["t1", "t3", "t2"]
        snapshot_store.create_snapshot.assert_awaited_once()
        assert "job-1" in snapshot_store.create_snapshot.await_args.kwargs["description"]

    async def test_snapshot_taken_before_table_is_replaced(self, mock_repository, snapshot_store):
        order = []
        snapshot_store.create_snapshot = AsyncMock(side_effect=lambda *a, **k: order.append("snapshot") or "s")
        mock_repository.replace_table = AsyncMock(side_effect=lambda *a: order.append("replace") or 0)
        service = TableRecalculationService(mock_repository, snapshot_store=snapshot_store)

        await service.recalculate("BL1", "2024")

        assert order == ["snapshot", "replace"]

    async def test_snapshot_feature_disabled(self, mock_repository, snapshot_store):
        service = TableRecalculationService(
            mock_repository,
            snapshot_store=snapshot_store,
            features=FeatureFlags(snapshot_creation=False),
        )

        outcome = await service.recalculate("BL1", "2024")

        assert outcome.snapshot_id is None
        snapshot_store.create_snapshot.assert_not_called()

    async def test_run_job_uses_job_key(self, mock_repository):
        service = TableRecalculationService(mock_repository)
        job = MagicMock(league_id="PL", season_id="2023", job_id="job-7")

        outcome = await service.run_job(job)

        assert (outcome.league_id, outcome.season_id) == ("PL", "2023")
        mock_repository.get_matches.assert_awaited_once_with("PL", "2023")


class TestFailures:
    """测试失败路径"""

    async def test_inconsistent_table_is_not_written(self, mock_repository):
        calculator = MagicMock()
        calculator.calculate.return_value = [TableRow("BL1", "2024", "t1", "Alpha", played=1, wins=1)]
        calculator.check_consistency.return_value = ["wins (1) != losses (0)"]
        service = TableRecalculationService(mock_repository, calculator=calculator)

        with pytest.raises(CalculationError) as exc_info:
            await service.recalculate("BL1", "2024", job_id="job-1")

        assert exc_info.value.context["job_id"] == "job-1"
        mock_repository.replace_table.assert_not_called()

    async def test_bad_match_data_is_calculation_error(self, mock_repository, make_match):
        mock_repository.get_matches = AsyncMock(return_value=[make_match("t1", "t1", 1, 0)])
        service = TableRecalculationService(mock_repository)

        with pytest.raises(CalculationError):
            await service.recalculate("BL1", "2024")

        mock_repository.replace_table.assert_not_called()

    async def test_database_error_propagates_as_retryable(self, mock_repository):
        mock_repository.get_matches = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("connection reset"))
        )
        service = TableRecalculationService(mock_repository)

        with pytest.raises(OperationalError) as exc_info:
            await service.recalculate("BL1", "2024")

        assert is_retryable(exc_info.value) is True
