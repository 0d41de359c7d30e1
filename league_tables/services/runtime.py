"""
TableAutomation - 组装积分榜自动化引擎

按配置创建并显式连接各组件（不使用全局单例）：
    TableRepository → SnapshotStore → TableRecalculationService
    → QueueManager → MatchLifecycleAdapter / AdminOperationsFacade

API 启动、运维脚本、集成测试都通过 build_automation() 获得同一套组件。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from league_tables.services.admin import AdminOperationsFacade
from league_tables.services.audit import AuditTrail, DatabaseAuditTrail
from league_tables.services.lifecycle import MatchLifecycleAdapter
from league_tables.services.queue_manager import QueueManager
from league_tables.services.recalculation import TableRecalculationService
from league_tables.services.snapshot_store import SnapshotStore
from league_tables.services.standings_calculator import StandingsCalculator
from league_tables.services.table_repository import TableRepository
from league_tables.services.validation import MatchValidator
from league_tables.shared.clock import Clock, utcnow
from league_tables.shared.config import AutomationConfig

logger = logging.getLogger(__name__)


@dataclass
class TableAutomation:
    """组装好的引擎组件"""
    config: AutomationConfig
    repository: TableRepository
    audit: AuditTrail
    snapshot_store: SnapshotStore
    recalculation: TableRecalculationService
    queue: QueueManager
    lifecycle: MatchLifecycleAdapter
    admin: AdminOperationsFacade

    async def start(self) -> None:
        """按功能开关启动队列 worker"""
        if self.config.features.queue_processing:
            await self.queue.start()
        else:
            logger.warning("Queue processing feature disabled; jobs will only be queued")

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        await self.queue.stop(timeout=timeout)


def build_automation(
    session_factory,
    config: AutomationConfig,
    audit: Optional[AuditTrail] = None,
    clock: Clock = utcnow,
) -> TableAutomation:
    """
    按配置组装引擎

    Args:
        session_factory: 数据库会话工厂
        config: 自动化配置（settings.automation）
        audit: 审计实现，默认写入数据库
        clock: 时钟（测试中可替换）
    """
    repository = TableRepository(session_factory)
    audit = audit or DatabaseAuditTrail(session_factory, clock=clock)

    snapshot_store = SnapshotStore(repository, config.snapshot, audit=audit, clock=clock)
    recalculation = TableRecalculationService(
        repository,
        StandingsCalculator(),
        snapshot_store if config.snapshot.enabled else None,
        config.features,
    )
    queue = QueueManager(recalculation.run_job, config.queue, audit=audit, clock=clock)
    lifecycle = MatchLifecycleAdapter(MatchValidator(), queue, config.features)
    admin = AdminOperationsFacade(queue, snapshot_store, repository)

    return TableAutomation(
        config=config,
        repository=repository,
        audit=audit,
        snapshot_store=snapshot_store,
        recalculation=recalculation,
        queue=queue,
        lifecycle=lifecycle,
        admin=admin,
    )
