"""
SnapshotStore - 积分榜快照与回滚

职责：
1. 每次重算前保存线上积分榜的完整副本（JSON 文件，可选 gzip）
2. 校验和（sha256）保证快照未被篡改
3. 从快照恢复：校验 → 备份当前表 → 事务内整体替换
4. 保留策略：每个 联赛+赛季 最多保留 N 份，超过 max_age_days 的删除

注意：
- 快照写入后不可修改（先写临时文件再原子改名）
- 恢复过程中任何一步失败，线上表格保持不变并抛出 RollbackFailure
- 文件 I/O 通过 asyncio.to_thread 执行，不阻塞事件循环
"""
from __future__ import annotations

import asyncio
import gzip
import hashlib
import json
import logging
import os
import pathlib
import re
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from league_tables.services.audit import AuditCategory, AuditTrail
from league_tables.services.errors import RollbackFailure, SnapshotNotFoundError
from league_tables.services.schemas import TableRow, serialize_rows
from league_tables.shared.clock import Clock, utcnow
from league_tables.shared.config import SnapshotConfig

logger = logging.getLogger(__name__)

_SNAPSHOT_ID_RE = re.compile(r"^snapshot_[A-Za-z0-9_\-]+$")
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9\-]")
_SUFFIXES = (".json", ".json.gz")

_ROW_FIELDS = set(TableRow.__dataclass_fields__)


# ==================== 数据类定义 ====================

@dataclass
class Snapshot:
    """积分榜快照（不可变）"""
    snapshot_id: str
    league_id: str
    season_id: str
    rows: List[TableRow]
    checksum: str
    created_at: datetime
    description: str = ""
    entry_count: int = 0
    file_size: int = 0
    compressed: bool = False

    def summary(self) -> dict:
        """不含行数据的摘要（列表展示用）"""
        return {
            "snapshot_id": self.snapshot_id,
            "league_id": self.league_id,
            "season_id": self.season_id,
            "checksum": self.checksum,
            "created_at": self.created_at.isoformat(),
            "description": self.description,
            "entry_count": self.entry_count,
            "file_size": self.file_size,
            "compressed": self.compressed,
        }

    def to_dict(self) -> dict:
        data = self.summary()
        data["rows"] = [row.to_dict() for row in self.rows]
        return data


@dataclass
class RestoreResult:
    """一次恢复的结果"""
    snapshot_id: str
    league_id: str
    season_id: str
    entries_restored: int
    restored_at: datetime
    backup_snapshot_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["restored_at"] = self.restored_at.isoformat()
        return data


def compute_checksum(rows: Sequence[TableRow]) -> str:
    """行数据规范字节表示的 sha256"""
    return hashlib.sha256(serialize_rows(rows)).hexdigest()


class SnapshotStore:
    """
    基于文件的快照存储

    文件名：snapshot_{league}_{season}_{timestamp}_{random}.json[.gz]
    文件内容：{"snapshot_id", "league_id", "season_id", "created_at",
              "description", "checksum", "entry_count", "rows": [...]}
    """

    def __init__(
        self,
        repository,
        config: SnapshotConfig,
        audit: Optional[AuditTrail] = None,
        clock: Clock = utcnow,
    ):
        self._repository = repository
        self._config = config
        self._audit = audit
        self._clock = clock
        self._directory = pathlib.Path(config.storage_directory)

    @property
    def directory(self) -> pathlib.Path:
        return self._directory

    # ==================== 创建 ====================

    async def create_snapshot(
        self,
        league_id: str,
        season_id: str,
        description: str = "",
        rows: Optional[Sequence[TableRow]] = None,
        apply_retention: bool = True,
    ) -> str:
        """
        保存线上积分榜的副本

        Args:
            league_id: 联赛 ID
            season_id: 赛季 ID
            description: 说明（例如 "Pre-calculation snapshot for job ..."）
            rows: 指定行数据；为空时读取线上积分榜
            apply_retention: 写入后是否执行保留策略

        Returns:
            快照 ID
        """
        if rows is None:
            rows = await self._repository.get_table(league_id, season_id)
        rows = list(rows)

        created_at = self._clock()
        snapshot_id = self._new_snapshot_id(league_id, season_id, created_at)
        checksum = compute_checksum(rows)

        envelope = {
            "snapshot_id": snapshot_id,
            "league_id": league_id,
            "season_id": season_id,
            "created_at": created_at.isoformat(),
            "description": description,
            "checksum": checksum,
            "entry_count": len(rows),
            "rows": [row.to_dict() for row in sorted(rows, key=lambda r: r.position)],
        }
        file_size = await asyncio.to_thread(self._write_file, snapshot_id, envelope)

        logger.info(
            f"Created snapshot {snapshot_id} for {league_id}/{season_id} ({len(rows)} entries)",
            extra={"snapshot_id": snapshot_id, "league_id": league_id, "season_id": season_id},
        )
        await self._record("created", league_id, season_id, snapshot_id, {
            "description": description,
            "entry_count": len(rows),
            "checksum": checksum,
            "file_size": file_size,
        })

        if apply_retention:
            await self.prune(league_id, season_id)
        return snapshot_id

    # ==================== 恢复 ====================

    async def restore_snapshot(self, snapshot_id: str) -> RestoreResult:
        """
        从快照恢复积分榜

        Raises:
            SnapshotNotFoundError: 快照不存在
            RollbackFailure: 文件损坏、校验和不一致或写入失败（线上表格未被修改）
        """
        snapshot = await self.get_snapshot(snapshot_id)
        warnings: List[str] = []

        if self._config.checksum_validation:
            actual = compute_checksum(snapshot.rows)
            if actual != snapshot.checksum:
                await self._record("restore_failed", snapshot.league_id, snapshot.season_id, snapshot_id, {
                    "reason": "checksum_mismatch",
                })
                raise RollbackFailure(
                    f"Snapshot {snapshot_id} failed checksum validation",
                    snapshot_id=snapshot_id,
                    expected=snapshot.checksum,
                    actual=actual,
                )
        else:
            warnings.append("checksum validation disabled")

        backup_id = None
        if self._config.backup_before_restore:
            try:
                backup_id = await self.create_snapshot(
                    snapshot.league_id,
                    snapshot.season_id,
                    description=f"Pre-restore backup before {snapshot_id}",
                    apply_retention=False,
                )
            except Exception as exc:
                logger.error(
                    f"Pre-restore backup for snapshot {snapshot_id} failed: {exc}",
                    extra={"snapshot_id": snapshot_id, "league_id": snapshot.league_id},
                )
                await self._record("restore_failed", snapshot.league_id, snapshot.season_id, snapshot_id, {
                    "reason": f"backup failed: {type(exc).__name__}: {exc}",
                })
                raise RollbackFailure(
                    f"Could not back up current table before restoring {snapshot_id}: {exc}",
                    snapshot_id=snapshot_id,
                ) from exc

        try:
            restored = await self._repository.replace_table(
                snapshot.league_id, snapshot.season_id, snapshot.rows
            )
        except Exception as exc:
            logger.error(
                f"Restore of snapshot {snapshot_id} failed: {exc}",
                extra={"snapshot_id": snapshot_id, "league_id": snapshot.league_id},
            )
            await self._record("restore_failed", snapshot.league_id, snapshot.season_id, snapshot_id, {
                "reason": f"{type(exc).__name__}: {exc}",
            })
            raise RollbackFailure(
                f"Failed to restore snapshot {snapshot_id}: {exc}",
                snapshot_id=snapshot_id,
            ) from exc

        logger.info(
            f"Restored snapshot {snapshot_id} into {snapshot.league_id}/{snapshot.season_id}",
            extra={"snapshot_id": snapshot_id, "entries": restored},
        )
        await self._record("restored", snapshot.league_id, snapshot.season_id, snapshot_id, {
            "entries_restored": restored,
            "backup_snapshot_id": backup_id,
        })

        await self.prune(snapshot.league_id, snapshot.season_id)
        return RestoreResult(
            snapshot_id=snapshot_id,
            league_id=snapshot.league_id,
            season_id=snapshot.season_id,
            entries_restored=restored,
            restored_at=self._clock(),
            backup_snapshot_id=backup_id,
            warnings=warnings,
        )

    # ==================== 查询 / 删除 ====================

    async def list_snapshots(self, league_id: str, season_id: str) -> List[Snapshot]:
        """列出某联赛赛季的快照（先执行保留策略，按时间倒序）"""
        await self.prune(league_id, season_id)
        snapshots = await asyncio.to_thread(self._scan)
        return [s for s in snapshots if s.league_id == league_id and s.season_id == season_id]

    async def get_snapshot(self, snapshot_id: str) -> Snapshot:
        """
        读取单个快照

        Raises:
            SnapshotNotFoundError: 快照不存在
            RollbackFailure: 文件无法解析或结构不完整
        """
        path = self._find_file(snapshot_id)
        if path is None:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} not found", snapshot_id=snapshot_id)
        try:
            return await asyncio.to_thread(self._read_file, path)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise RollbackFailure(
                f"Snapshot {snapshot_id} is unreadable: {exc}",
                snapshot_id=snapshot_id,
            ) from exc

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        """删除快照，不存在时返回 False"""
        path = self._find_file(snapshot_id)
        if path is None:
            return False
        league_id = season_id = None
        try:
            snapshot = await asyncio.to_thread(self._read_file, path)
            league_id, season_id = snapshot.league_id, snapshot.season_id
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning(f"Deleting unreadable snapshot file {path.name}")
        await asyncio.to_thread(path.unlink, True)
        logger.info(f"Deleted snapshot {snapshot_id}")
        await self._record("deleted", league_id, season_id, snapshot_id, {})
        return True

    # ==================== 保留策略 ====================

    async def prune(self, league_id: str, season_id: str) -> int:
        """
        执行保留策略

        - 超过 max_age_days 的快照删除
        - 按时间倒序保留 max_snapshots 份

        Returns:
            删除的快照数
        """
        snapshots = [
            s for s in await asyncio.to_thread(self._scan)
            if s.league_id == league_id and s.season_id == season_id
        ]
        cutoff = self._clock() - timedelta(days=self._config.max_age_days)

        doomed = [s for s in snapshots if s.created_at < cutoff]
        kept = [s for s in snapshots if s.created_at >= cutoff]
        doomed.extend(kept[self._config.max_snapshots:])

        for snapshot in doomed:
            await self._remove(snapshot, reason="retention")
        if doomed:
            logger.info(f"Pruned {len(doomed)} snapshots for {league_id}/{season_id}")
        return len(doomed)

    async def delete_old_snapshots(self, max_age_days: Optional[float] = None) -> int:
        """删除所有联赛中早于 max_age_days 的快照"""
        days = self._config.max_age_days if max_age_days is None else max_age_days
        cutoff = self._clock() - timedelta(days=days)
        doomed = [s for s in await asyncio.to_thread(self._scan) if s.created_at < cutoff]
        for snapshot in doomed:
            await self._remove(snapshot, reason="max_age")
        if doomed:
            logger.info(f"Deleted {len(doomed)} snapshots older than {days} days")
        return len(doomed)

    # ==================== 内部工具 ====================

    def _new_snapshot_id(self, league_id: str, season_id: str, created_at: datetime) -> str:
        league = _UNSAFE_CHARS_RE.sub("-", str(league_id))
        season = _UNSAFE_CHARS_RE.sub("-", str(season_id))
        stamp = created_at.strftime("%Y%m%dT%H%M%S%f")
        return f"snapshot_{league}_{season}_{stamp}_{secrets.token_hex(4)}"

    def _find_file(self, snapshot_id: str) -> Optional[pathlib.Path]:
        if not _SNAPSHOT_ID_RE.match(snapshot_id or ""):
            return None
        for suffix in _SUFFIXES:
            path = self._directory / f"{snapshot_id}{suffix}"
            if path.exists():
                return path
        return None

    def _write_file(self, snapshot_id: str, envelope: Dict[str, Any]) -> int:
        self._directory.mkdir(parents=True, exist_ok=True)
        data = json.dumps(envelope, ensure_ascii=False, indent=2).encode("utf-8")
        suffix = ".json"
        if self._config.compression:
            data = gzip.compress(data)
            suffix = ".json.gz"

        target = self._directory / f"{snapshot_id}{suffix}"
        tmp = self._directory / f".{snapshot_id}{suffix}.tmp"
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
        return len(data)

    def _read_file(self, path: pathlib.Path) -> Snapshot:
        raw = path.read_bytes()
        compressed = path.name.endswith(".gz")
        if compressed:
            raw = gzip.decompress(raw)
        envelope = json.loads(raw.decode("utf-8"))

        rows = []
        for item in envelope["rows"]:
            missing = _ROW_FIELDS - set(item)
            if missing:
                raise ValueError(f"row is missing fields {sorted(missing)}")
            rows.append(TableRow.from_dict(item))

        if envelope["entry_count"] != len(rows):
            raise ValueError(
                f"entry_count {envelope['entry_count']} does not match {len(rows)} rows"
            )

        return Snapshot(
            snapshot_id=envelope["snapshot_id"],
            league_id=envelope["league_id"],
            season_id=envelope["season_id"],
            rows=rows,
            checksum=envelope["checksum"],
            created_at=datetime.fromisoformat(envelope["created_at"]),
            description=envelope.get("description", ""),
            entry_count=envelope["entry_count"],
            file_size=path.stat().st_size,
            compressed=compressed,
        )

    def _scan(self) -> List[Snapshot]:
        """读取目录下所有可解析的快照，按时间倒序"""
        if not self._directory.exists():
            return []
        snapshots = []
        for path in self._directory.iterdir():
            if not path.name.startswith("snapshot_") or not path.name.endswith(_SUFFIXES):
                continue
            try:
                snapshots.append(self._read_file(path))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning(f"Skipping unreadable snapshot file {path.name}: {exc}")
        snapshots.sort(key=lambda s: (s.created_at, s.snapshot_id), reverse=True)
        return snapshots

    async def _remove(self, snapshot: Snapshot, reason: str) -> None:
        path = self._find_file(snapshot.snapshot_id)
        if path is None:
            return
        await asyncio.to_thread(path.unlink, True)
        await self._record("pruned", snapshot.league_id, snapshot.season_id, snapshot.snapshot_id, {
            "reason": reason,
        })

    async def _record(
        self,
        action: str,
        league_id: Optional[str],
        season_id: Optional[str],
        snapshot_id: str,
        detail: Dict[str, Any],
    ) -> None:
        if self._audit is not None:
            await self._audit.record(
                AuditCategory.SNAPSHOT,
                action,
                league_id=league_id,
                season_id=season_id,
                subject_id=snapshot_id,
                detail=detail,
            )
