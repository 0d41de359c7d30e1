"""
测试积分榜运维 API

测试内容：
1. POST /api/v1/tables/recalculate(-all) - 手动触发
2. GET  /api/v1/tables/queue | health | history | jobs - 查询
3. POST /api/v1/tables/pause | resume - 暂停 / 恢复
4. /api/v1/tables/dead-letter - 死信队列
5. /api/v1/tables/snapshots - 快照列表 / 创建 / 恢复 / 删除
6. /health /ready - 服务健康
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

from league_tables.services.errors import (
    JobNotFoundError,
    LeagueNotFoundError,
    NoActiveSeasonError,
    RollbackFailure,
    SnapshotNotFoundError,
)
from league_tables.services.queue_manager import CalculationJob, JobStatus
from league_tables.services.schemas import JobPriority, TableRow
from league_tables.services.snapshot_store import RestoreResult, Snapshot

NOW = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)


def _job(status=JobStatus.DEAD_LETTER) -> CalculationJob:
    return CalculationJob(
        job_id="job-1",
        league_id="BL1",
        season_id="2024",
        priority=JobPriority.NORMAL,
        created_at=NOW,
        status=status,
        trigger="game_result",
        retry_count=3,
        last_error="db blip",
    )


def _snapshot() -> Snapshot:
    return Snapshot(
        snapshot_id="snapshot_BL1_2024_20240901T120000000000_abcd1234",
        league_id="BL1",
        season_id="2024",
        rows=[TableRow("BL1", "2024", "t1", "Alpha", position=1)],
        checksum="ab" * 32,
        created_at=NOW,
        description="Pre-calculation snapshot for job job-1",
        entry_count=1,
    )


class TestRecalculationAPI:
    """手动触发接口"""

    @pytest.mark.asyncio
    async def test_trigger_recalculation(self, client: AsyncClient, mock_admin_facade):
        """测试手动触发单个联赛"""
        response = await client.post(
            "/api/v1/tables/recalculate",
            json={"league_id": "BL1", "description": "score fix"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["job_id"] == "job-1"
        assert data["season_id"] == "2024"
        mock_admin_facade.trigger_recalculation.assert_awaited_once_with(
            "BL1", None, description="score fix", priority="high"
        )

    @pytest.mark.asyncio
    async def test_trigger_unknown_league(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.trigger_recalculation = AsyncMock(
            side_effect=LeagueNotFoundError("League XX not found", league_id="XX")
        )

        response = await client.post("/api/v1/tables/recalculate", json={"league_id": "XX"})

        assert response.status_code == 404
        assert response.json()["detail"]["type"] == "LeagueNotFoundError"

    @pytest.mark.asyncio
    async def test_trigger_without_active_season(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.trigger_recalculation = AsyncMock(side_effect=NoActiveSeasonError("no season"))

        response = await client.post("/api/v1/tables/recalculate", json={"league_id": "BL1"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_priority(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/tables/recalculate",
            json={"league_id": "BL1", "priority": "urgent"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_trigger_all_leagues(self, client: AsyncClient):
        response = await client.post("/api/v1/tables/recalculate-all", json={})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [job["league_id"] for job in data["jobs"]] == ["BL1", "BL2"]


class TestQueueAPI:
    """队列查询与控制接口"""

    @pytest.mark.asyncio
    async def test_queue_status(self, client: AsyncClient):
        response = await client.get("/api/v1/tables/queue")

        assert response.status_code == 200
        assert response.json()["queue_depth"] == 0

    @pytest.mark.asyncio
    async def test_automation_health(self, client: AsyncClient):
        response = await client.get("/api/v1/tables/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_history(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.get_job_history.return_value = [{
            "job_id": "job-1", "league_id": "BL1", "season_id": "2024", "trigger": "manual",
            "status": "completed", "priority": "high", "started_at": NOW.isoformat(),
            "completed_at": NOW.isoformat(), "duration_ms": 12.5, "retry_count": 0,
            "error": None, "entries_updated": 18, "description": None,
        }]

        response = await client.get("/api/v1/tables/history/BL1?limit=10")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["history"][0]["entries_updated"] == 18
        mock_admin_facade.get_job_history.assert_called_once_with("BL1", 10)

    @pytest.mark.asyncio
    async def test_history_limit_validated(self, client: AsyncClient):
        response = await client.get("/api/v1/tables/history/BL1?limit=0")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_job(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.get_job.return_value = _job(JobStatus.COMPLETED)

        response = await client.get("/api/v1/tables/jobs/job-1")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_get_missing_job(self, client: AsyncClient):
        response = await client.get("/api/v1/tables/jobs/job-404")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, client: AsyncClient, mock_admin_facade):
        paused = await client.post("/api/v1/tables/pause")
        resumed = await client.post("/api/v1/tables/resume")

        assert paused.json()["paused"] is True
        assert resumed.json()["paused"] is False
        mock_admin_facade.pause_automation.assert_awaited_once()
        mock_admin_facade.resume_automation.assert_awaited_once()


class TestDeadLetterAPI:
    """死信队列接口"""

    @pytest.mark.asyncio
    async def test_list_dead_letter(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.get_dead_letter_jobs.return_value = [_job()]

        response = await client.get("/api/v1/tables/dead-letter")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["jobs"][0]["last_error"] == "db blip"
        assert data["jobs"][0]["priority"] == "normal"

    @pytest.mark.asyncio
    async def test_resubmit(self, client: AsyncClient):
        response = await client.post("/api/v1/tables/dead-letter/job-1/resubmit")

        assert response.status_code == 200
        assert response.json()["job_id"] == "job-9"

    @pytest.mark.asyncio
    async def test_resubmit_unknown(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.resubmit_dead_letter = AsyncMock(side_effect=JobNotFoundError("missing"))

        response = await client.post("/api/v1/tables/dead-letter/job-x/resubmit")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_clear_dead_letter(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.clear_dead_letter = AsyncMock(return_value=4)

        response = await client.delete("/api/v1/tables/dead-letter")

        assert response.json() == {"success": True, "cleared": 4}


class TestSnapshotAPI:
    """快照接口"""

    @pytest.mark.asyncio
    async def test_list_snapshots(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.list_snapshots = AsyncMock(return_value=[_snapshot()])

        response = await client.get("/api/v1/tables/snapshots?league_id=BL1&season_id=2024")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["snapshots"][0]["entry_count"] == 1
        assert "rows" not in data["snapshots"][0]

    @pytest.mark.asyncio
    async def test_list_snapshots_requires_key(self, client: AsyncClient):
        response = await client.get("/api/v1/tables/snapshots?league_id=BL1")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_snapshot(self, client: AsyncClient, mock_admin_facade):
        response = await client.post(
            "/api/v1/tables/snapshots",
            json={"league_id": "BL1", "season_id": "2024", "description": "before import"},
        )

        assert response.status_code == 200
        assert response.json()["snapshot_id"] == "snapshot_BL1_2024_x"
        mock_admin_facade.create_snapshot.assert_awaited_once_with("BL1", "2024", "before import")

    @pytest.mark.asyncio
    async def test_get_snapshot(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.get_snapshot = AsyncMock(return_value=_snapshot())

        response = await client.get(f"/api/v1/tables/snapshots/{_snapshot().snapshot_id}")

        assert response.status_code == 200
        assert response.json()["rows"][0]["team_name"] == "Alpha"

    @pytest.mark.asyncio
    async def test_get_missing_snapshot(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.get_snapshot = AsyncMock(side_effect=SnapshotNotFoundError("missing"))

        response = await client.get("/api/v1/tables/snapshots/snapshot_nope")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_restore_snapshot(self, client: AsyncClient, mock_admin_facade):
        mock_admin_facade.restore_snapshot = AsyncMock(return_value=RestoreResult(
            snapshot_id="snapshot_a", league_id="BL1", season_id="2024",
            entries_restored=18, restored_at=NOW, backup_snapshot_id="snapshot_b",
        ))

        response = await client.post("/api/v1/tables/snapshots/snapshot_a/restore")

        assert response.status_code == 200
        data = response.json()
        assert data["entries_restored"] == 18
        assert data["backup_snapshot_id"] == "snapshot_b"

    @pytest.mark.asyncio
    async def test_restore_checksum_failure(self, client: AsyncClient, mock_admin_facade):
        """校验和不一致返回 409，带结构化错误"""
        mock_admin_facade.restore_snapshot = AsyncMock(side_effect=RollbackFailure(
            "Snapshot snapshot_a failed checksum validation", snapshot_id="snapshot_a",
        ))

        response = await client.post("/api/v1/tables/snapshots/snapshot_a/restore")

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["type"] == "RollbackFailure"
        assert detail["snapshot_id"] == "snapshot_a"

    @pytest.mark.asyncio
    async def test_delete_snapshot(self, client: AsyncClient, mock_admin_facade):
        response = await client.delete("/api/v1/tables/snapshots/snapshot_a")
        assert response.status_code == 200

        mock_admin_facade.delete_snapshot = AsyncMock(return_value=False)
        response = await client.delete("/api/v1/tables/snapshots/snapshot_a")
        assert response.status_code == 404


class TestServiceHealth:
    """服务健康接口"""

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_ready_without_automation(self, client: AsyncClient):
        response = await client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["automation"] == "missing"

    @pytest.mark.asyncio
    async def test_ready_with_automation(self, client: AsyncClient):
        from league_tables.services.api.main import app

        automation = MagicMock()
        automation.repository.ping = AsyncMock(return_value=None)
        app.state.automation = automation
        try:
            response = await client.get("/ready")
        finally:
            del app.state.automation

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
