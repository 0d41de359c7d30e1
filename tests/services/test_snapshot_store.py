"""
SnapshotStore 测试

测试覆盖：
1. 创建 / 读取 / 列表 / 删除
2. 快照 → 重算 → 恢复 后积分榜字节级一致（SQLite）
3. 校验和损坏时恢复失败，线上表格保持不变
4. 写入失败 → RollbackFailure
5. 保留策略（数量 + 时间）与 gzip 压缩
6. 审计记录
"""
import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from league_tables.services.errors import RollbackFailure, SnapshotNotFoundError
from league_tables.services.schemas import serialize_rows
from league_tables.services.snapshot_store import SnapshotStore, compute_checksum
from league_tables.services.standings_calculator import StandingsCalculator
from league_tables.services.table_repository import TableRepository

pytestmark = pytest.mark.asyncio

TEAMS = {"t1": "Alpha", "t2": "Bravo", "t3": "Charlie", "t4": "Delta"}


@pytest.fixture
def repository(session_factory):
    return TableRepository(session_factory)


@pytest.fixture
def store(repository, snapshot_config, memory_audit, clock):
    return SnapshotStore(repository, snapshot_config, audit=memory_audit, clock=clock)


@pytest.fixture
def mock_store(mock_repository, snapshot_config, memory_audit, clock, sample_rows):
    """仓储为 Mock 的快照存储（不连接数据库）"""
    mock_repository.get_table = AsyncMock(return_value=sample_rows)
    return SnapshotStore(mock_repository, snapshot_config, audit=memory_audit, clock=clock)


def _snapshot_path(store, snapshot_id):
    return store.directory / f"{snapshot_id}.json"


class TestCreateAndRead:
    """测试创建与读取"""

    async def test_create_snapshot_writes_file(self, mock_store, sample_rows):
        snapshot_id = await mock_store.create_snapshot("BL1", "2024", "before job-1")

        path = _snapshot_path(mock_store, snapshot_id)
        assert path.exists()
        envelope = json.loads(path.read_text(encoding="utf-8"))
        assert envelope["league_id"] == "BL1"
        assert envelope["entry_count"] == 4
        assert envelope["checksum"] == compute_checksum(sample_rows)
        assert snapshot_id.startswith("snapshot_BL1_2024_")

    async def test_no_temp_files_left(self, mock_store):
        await mock_store.create_snapshot("BL1", "2024")

        assert [p.name for p in mock_store.directory.iterdir() if p.name.endswith(".tmp")] == []

    async def test_get_snapshot_round_trip(self, mock_store, sample_rows):
        snapshot_id = await mock_store.create_snapshot("BL1", "2024", "manual")

        snapshot = await mock_store.get_snapshot(snapshot_id)

        assert snapshot.description == "manual"
        assert serialize_rows(snapshot.rows) == serialize_rows(sample_rows)
        assert "rows" not in snapshot.summary()
        assert len(snapshot.to_dict()["rows"]) == 4

    async def test_get_missing_snapshot(self, mock_store):
        with pytest.raises(SnapshotNotFoundError):
            await mock_store.get_snapshot("snapshot_BL1_2024_missing")

    async def test_path_like_id_is_not_found(self, mock_store):
        with pytest.raises(SnapshotNotFoundError):
            await mock_store.get_snapshot("../etc/passwd")

    async def test_unreadable_snapshot(self, mock_store):
        snapshot_id = await mock_store.create_snapshot("BL1", "2024")
        _snapshot_path(mock_store, snapshot_id).write_text("{not json", encoding="utf-8")

        with pytest.raises(RollbackFailure):
            await mock_store.get_snapshot(snapshot_id)

    async def test_explicit_rows(self, mock_store, mock_repository, sample_rows):
        snapshot_id = await mock_store.create_snapshot("BL1", "2024", rows=sample_rows[:2])

        snapshot = await mock_store.get_snapshot(snapshot_id)

        assert snapshot.entry_count == 2
        mock_repository.get_table.assert_not_called()

    async def test_compressed_snapshot(self, mock_repository, snapshot_config, clock, sample_rows):
        snapshot_config.compression = True
        mock_repository.get_table = AsyncMock(return_value=sample_rows)
        store = SnapshotStore(mock_repository, snapshot_config, clock=clock)

        snapshot_id = await store.create_snapshot("BL1", "2024")
        snapshot = await store.get_snapshot(snapshot_id)

        assert (store.directory / f"{snapshot_id}.json.gz").exists()
        assert snapshot.compressed is True
        assert serialize_rows(snapshot.rows) == serialize_rows(sample_rows)

    async def test_audit_records_creation(self, mock_store, memory_audit):
        snapshot_id = await mock_store.create_snapshot("BL1", "2024")

        assert memory_audit.actions_for(snapshot_id) == ["created"]
        assert memory_audit.entries[0].category == "snapshot"


class TestRestore:
    """测试恢复（SQLite 真实事务）"""

    async def test_snapshot_recalculate_restore_is_byte_identical(self, store, repository, seed, make_match):
        """快照 → 用不同结果重算 → 恢复 → 与重算前完全一致"""
        await seed(TEAMS, [])
        calculator = StandingsCalculator()
        original = calculator.calculate([
            make_match("t1", "t2", 3, 1),
            make_match("t3", "t4", 0, 0),
        ])
        await repository.replace_table("BL1", "2024", original)
        before = serialize_rows(await repository.get_table("BL1", "2024"))

        snapshot_id = await store.create_snapshot("BL1", "2024", "pre-calculation")
        changed = calculator.calculate([
            make_match("t1", "t2", 0, 5),
            make_match("t3", "t4", 2, 1),
        ])
        await repository.replace_table("BL1", "2024", changed)
        assert serialize_rows(await repository.get_table("BL1", "2024")) != before

        result = await store.restore_snapshot(snapshot_id)

        assert serialize_rows(await repository.get_table("BL1", "2024")) == before
        assert result.entries_restored == 4
        assert result.backup_snapshot_id is not None

    async def test_corrupted_checksum_leaves_table_untouched(self, store, repository, seed, sample_rows, memory_audit):
        await seed(TEAMS, [])
        await repository.replace_table("BL1", "2024", sample_rows)
        snapshot_id = await store.create_snapshot("BL1", "2024")

        changed = sample_rows[:3]
        await repository.replace_table("BL1", "2024", changed)
        before = serialize_rows(await repository.get_table("BL1", "2024"))

        path = _snapshot_path(store, snapshot_id)
        envelope = json.loads(path.read_text(encoding="utf-8"))
        envelope["rows"][0]["points"] = 99
        path.write_text(json.dumps(envelope), encoding="utf-8")

        with pytest.raises(RollbackFailure) as exc_info:
            await store.restore_snapshot(snapshot_id)

        assert serialize_rows(await repository.get_table("BL1", "2024")) == before
        assert exc_info.value.context["snapshot_id"] == snapshot_id
        assert memory_audit.actions_for(snapshot_id)[-1] == "restore_failed"

    async def test_backup_created_before_restore(self, store, repository, seed, sample_rows):
        await seed(TEAMS, [])
        await repository.replace_table("BL1", "2024", sample_rows)
        snapshot_id = await store.create_snapshot("BL1", "2024")
        await repository.replace_table("BL1", "2024", sample_rows[:1])

        result = await store.restore_snapshot(snapshot_id)
        backup = await store.get_snapshot(result.backup_snapshot_id)

        assert backup.entry_count == 1
        assert backup.description.startswith("Pre-restore backup")

    async def test_write_failure_raises_rollback_failure(self, mock_store, mock_repository, memory_audit):
        snapshot_id = await mock_store.create_snapshot("BL1", "2024")
        mock_repository.replace_table = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(RollbackFailure) as exc_info:
            await mock_store.restore_snapshot(snapshot_id)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert memory_audit.actions_for(snapshot_id)[-1] == "restore_failed"

    async def test_backup_read_failure_raises_rollback_failure(self, mock_store, mock_repository, memory_audit):
        """恢复前备份时读取线上表失败：结构化 RollbackFailure，表格不被写入"""
        snapshot_id = await mock_store.create_snapshot("BL1", "2024")
        mock_repository.get_table = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))

        with pytest.raises(RollbackFailure) as exc_info:
            await mock_store.restore_snapshot(snapshot_id)

        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.to_dict()["snapshot_id"] == snapshot_id
        assert memory_audit.actions_for(snapshot_id)[-1] == "restore_failed"
        mock_repository.replace_table.assert_not_called()

    async def test_restore_missing_snapshot(self, mock_store):
        with pytest.raises(SnapshotNotFoundError):
            await mock_store.restore_snapshot("snapshot_BL1_2024_nothing")

    async def test_restore_without_backup(self, mock_repository, snapshot_config, clock, sample_rows):
        snapshot_config.backup_before_restore = False
        mock_repository.get_table = AsyncMock(return_value=sample_rows)
        store = SnapshotStore(mock_repository, snapshot_config, clock=clock)
        snapshot_id = await store.create_snapshot("BL1", "2024")

        result = await store.restore_snapshot(snapshot_id)

        assert result.backup_snapshot_id is None
        assert len(await store.list_snapshots("BL1", "2024")) == 1
        mock_repository.replace_table.assert_awaited_once()


class TestRetention:
    """测试保留策略"""

    async def test_keeps_newest_max_snapshots(self, mock_store, snapshot_config):
        snapshot_config.max_snapshots = 3
        ids = [await mock_store.create_snapshot("BL1", "2024", f"#{i}") for i in range(5)]

        listed = await mock_store.list_snapshots("BL1", "2024")

        assert [s.snapshot_id for s in listed] == list(reversed(ids))[:3]

    async def test_retention_is_per_league_season(self, mock_store, snapshot_config):
        snapshot_config.max_snapshots = 1
        await mock_store.create_snapshot("BL1", "2024")
        await mock_store.create_snapshot("BL1", "2024")
        await mock_store.create_snapshot("PL", "2024")

        assert len(await mock_store.list_snapshots("BL1", "2024")) == 1
        assert len(await mock_store.list_snapshots("PL", "2024")) == 1

    async def test_old_snapshots_pruned_on_list(self, mock_store, clock):
        await mock_store.create_snapshot("BL1", "2024")
        clock.advance(days=31)

        assert await mock_store.list_snapshots("BL1", "2024") == []

    async def test_delete_old_snapshots(self, mock_store, clock):
        await mock_store.create_snapshot("BL1", "2024")
        await mock_store.create_snapshot("PL", "2024")
        clock.advance(days=8)
        await mock_store.create_snapshot("PL", "2024")

        deleted = await mock_store.delete_old_snapshots(max_age_days=7)

        assert deleted == 2
        assert len(await mock_store.list_snapshots("PL", "2024")) == 1

    async def test_delete_snapshot(self, mock_store, memory_audit):
        snapshot_id = await mock_store.create_snapshot("BL1", "2024")

        assert await mock_store.delete_snapshot(snapshot_id) is True
        assert await mock_store.delete_snapshot(snapshot_id) is False
        assert memory_audit.actions_for(snapshot_id) == ["created", "deleted"]
