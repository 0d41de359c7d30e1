"""
AuditTrail - 审计日志

记录每一次任务状态流转与快照操作，只追加不修改。

实现：
- DatabaseAuditTrail: 写入 audit_log 表（生产）
- MemoryAuditTrail: 保存在内存列表中（测试 / 无数据库的脚本）

写审计失败不会中断任务本身，只记录异常日志。
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from league_tables.infra.db.models import AuditLogEntry
from league_tables.shared.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class AuditCategory:
    JOB = "job"
    SNAPSHOT = "snapshot"


@dataclass
class AuditEntry:
    """一条审计记录"""
    category: str
    action: str
    created_at: datetime
    league_id: Optional[str] = None
    season_id: Optional[str] = None
    subject_id: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class AuditTrail:
    """审计日志基类"""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock

    async def record(
        self,
        category: str,
        action: str,
        league_id: Optional[str] = None,
        season_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        追加一条审计记录

        失败时记录异常日志后返回，调用方无需处理。
        """
        entry = AuditEntry(
            category=category,
            action=action,
            created_at=self._clock(),
            league_id=league_id,
            season_id=season_id,
            subject_id=subject_id,
            detail=dict(detail or {}),
        )
        try:
            await self._append(entry)
        except Exception:
            logger.exception(
                f"Failed to write audit entry {category}/{action} for {subject_id}",
                extra={"league_id": league_id, "season_id": season_id, "subject_id": subject_id},
            )

    async def list_entries(
        self,
        category: Optional[str] = None,
        subject_id: Optional[str] = None,
        league_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        raise NotImplementedError

    async def _append(self, entry: AuditEntry) -> None:
        raise NotImplementedError


class MemoryAuditTrail(AuditTrail):
    """内存审计日志"""

    def __init__(self, clock: Clock = utcnow):
        super().__init__(clock)
        self.entries: List[AuditEntry] = []

    async def _append(self, entry: AuditEntry) -> None:
        entry.id = len(self.entries) + 1
        self.entries.append(entry)

    async def list_entries(
        self,
        category: Optional[str] = None,
        subject_id: Optional[str] = None,
        league_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        matched = [
            e for e in self.entries
            if (category is None or e.category == category)
            and (subject_id is None or e.subject_id == subject_id)
            and (league_id is None or e.league_id == league_id)
        ]
        return list(reversed(matched))[:limit]

    def actions_for(self, subject_id: str) -> List[str]:
        """按时间顺序返回某个任务/快照的全部动作"""
        return [e.action for e in self.entries if e.subject_id == subject_id]


class DatabaseAuditTrail(AuditTrail):
    """数据库审计日志（audit_log 表）"""

    def __init__(self, session_factory, clock: Clock = utcnow):
        super().__init__(clock)
        self._session_factory = session_factory

    async def _append(self, entry: AuditEntry) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(AuditLogEntry(
                    category=entry.category,
                    action=entry.action,
                    league_id=entry.league_id,
                    season_id=entry.season_id,
                    subject_id=entry.subject_id,
                    detail=entry.detail,
                    created_at=entry.created_at,
                ))

    async def list_entries(
        self,
        category: Optional[str] = None,
        subject_id: Optional[str] = None,
        league_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        query = select(AuditLogEntry)
        if category is not None:
            query = query.where(AuditLogEntry.category == category)
        if subject_id is not None:
            query = query.where(AuditLogEntry.subject_id == subject_id)
        if league_id is not None:
            query = query.where(AuditLogEntry.league_id == league_id)
        query = query.order_by(AuditLogEntry.id.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [
                AuditEntry(
                    id=row.id,
                    category=row.category,
                    action=row.action,
                    created_at=row.created_at,
                    league_id=row.league_id,
                    season_id=row.season_id,
                    subject_id=row.subject_id,
                    detail=row.detail or {},
                )
                for row in result.scalars().all()
            ]
