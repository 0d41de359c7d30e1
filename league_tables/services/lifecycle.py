"""
MatchLifecycleAdapter - 比赛变更通知入口

外部数据源（CMS）在比赛创建/更新/删除后调用本模块：
- 比赛变为 finished           → 校验 → 普通优先级入队
- 已结束比赛的比分被修正       → 校验 → 普通优先级入队
- 已结束比赛被改回其他状态     → 不校验，入队（积分榜需要撤销该场）
- 比赛被删除                   → 不校验，入队
- 比赛被移到其他联赛/赛季      → 新旧两个联赛赛季都入队

校验失败时不入队，错误同步返回给调用方。
仅手动模式（features.automatic_calculation = false）下照常校验，但从不入队。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from league_tables.services.config import trigger_config
from league_tables.services.schemas import JobPriority, LeagueSeasonKey, MatchResult, MatchStatus
from league_tables.services.validation import MatchValidator, ValidationResult
from league_tables.shared.config import FeatureFlags

logger = logging.getLogger(__name__)


class LifecycleAction:
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class LifecycleOutcome:
    ENQUEUED = "enqueued"
    REJECTED = "rejected"
    IGNORED = "ignored"
    MANUAL_MODE = "manual_mode"


@dataclass
class LifecycleEvent:
    """一次比赛变更通知"""
    action: str
    match: MatchResult
    previous: Optional[MatchResult] = None


@dataclass
class LifecycleResult:
    """通知处理结果"""
    outcome: str
    job_ids: List[str] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome != LifecycleOutcome.REJECTED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "accepted": self.accepted,
            "job_ids": list(self.job_ids),
            "validation": self.validation.to_dict() if self.validation else None,
            "reason": self.reason,
        }


def _score_changed(match: MatchResult, previous: MatchResult) -> bool:
    return (
        match.home_goals != previous.home_goals
        or match.away_goals != previous.away_goals
        or match.home_team_id != previous.home_team_id
        or match.away_team_id != previous.away_team_id
    )


class MatchLifecycleAdapter:
    """比赛生命周期适配器"""

    def __init__(
        self,
        validator: MatchValidator,
        queue_manager,
        features: Optional[FeatureFlags] = None,
        triggers=trigger_config,
    ):
        self._validator = validator
        self._queue = queue_manager
        self._features = features or FeatureFlags()
        self._triggers = triggers

    # ==================== 显式入口 ====================

    async def on_match_finished(
        self,
        match: MatchResult,
        previous: Optional[MatchResult] = None,
    ) -> LifecycleResult:
        """比赛结束（创建即结束，或从未结束状态变为结束）"""
        return await self._validate_and_enqueue(
            match, [match.key], "game_result", f"Match {match.match_id} finished"
        )

    async def on_match_corrected(
        self,
        match: MatchResult,
        previous: Optional[MatchResult] = None,
    ) -> LifecycleResult:
        """已结束比赛的比分修正"""
        keys = [match.key]
        if previous is not None and previous.key != match.key:
            keys.append(previous.key)
        return await self._validate_and_enqueue(
            match, keys, "game_result", f"Match {match.match_id} corrected"
        )

    async def on_match_reverted(
        self,
        match: MatchResult,
        previous: Optional[MatchResult] = None,
    ) -> LifecycleResult:
        """已结束比赛被改回其他状态：撤销该场对积分榜的影响"""
        validation = None
        if previous is not None:
            validation = self._validator.validate_status_transition(previous.status, match.status)
        keys = [match.key]
        if previous is not None and previous.key != match.key:
            keys.append(previous.key)
        return await self._enqueue(
            keys,
            self._triggers.GAME_RESULT_PRIORITY,
            "game_reverted",
            f"Match {match.match_id} moved back to {match.status}",
            validation,
        )

    async def on_match_deleted(self, match: MatchResult) -> LifecycleResult:
        """比赛被删除（无需校验）"""
        return await self._enqueue(
            [match.key],
            self._triggers.GAME_DELETED_PRIORITY,
            "game_deleted",
            f"Match {match.match_id} deleted",
        )

    # ==================== 事件分发 ====================

    async def handle_event(self, event: LifecycleEvent) -> LifecycleResult:
        """
        按变更类型分发

        与积分榜无关的变更（例如未结束比赛改时间）直接忽略。
        """
        match, previous = event.match, event.previous

        if event.action == LifecycleAction.DELETED:
            return await self.on_match_deleted(match)

        if event.action not in (LifecycleAction.CREATED, LifecycleAction.UPDATED):
            return LifecycleResult(outcome=LifecycleOutcome.IGNORED, reason=f"Unknown action {event.action!r}")

        finished_now = match.status == MatchStatus.FINISHED.value
        finished_before = previous is not None and previous.status == MatchStatus.FINISHED.value

        if event.action == LifecycleAction.CREATED or previous is None:
            if finished_now:
                return await self.on_match_finished(match)
            return self._ignored(match, "match is not finished")

        if finished_now and not finished_before:
            return await self.on_match_finished(match, previous)
        if finished_now and finished_before:
            if previous.key != match.key or _score_changed(match, previous):
                return await self.on_match_corrected(match, previous)
            return self._ignored(match, "no relevant change")
        if finished_before:
            return await self.on_match_reverted(match, previous)
        return self._ignored(match, "match is not finished")

    # ==================== 内部工具 ====================

    async def _validate_and_enqueue(
        self,
        match: MatchResult,
        keys: List[LeagueSeasonKey],
        trigger: str,
        description: str,
    ) -> LifecycleResult:
        validation = self._validator.validate(match)
        if not validation.valid:
            logger.warning(
                f"Rejected match {match.match_id}: {validation.error_codes}",
                extra={"match_id": match.match_id, "league_id": match.league_id, "season_id": match.season_id},
            )
            return LifecycleResult(
                outcome=LifecycleOutcome.REJECTED,
                validation=validation,
                reason="; ".join(issue.message for issue in validation.errors),
            )
        return await self._enqueue(keys, self._triggers.GAME_RESULT_PRIORITY, trigger, description, validation)

    async def _enqueue(
        self,
        keys: List[LeagueSeasonKey],
        priority: JobPriority,
        trigger: str,
        description: str,
        validation: Optional[ValidationResult] = None,
    ) -> LifecycleResult:
        if not self._features.automatic_calculation:
            logger.info(f"Automatic calculation disabled; not enqueuing {trigger} for {[str(k) for k in keys]}")
            return LifecycleResult(
                outcome=LifecycleOutcome.MANUAL_MODE,
                validation=validation,
                reason="automatic calculation is disabled",
            )

        job_ids = []
        for key in dict.fromkeys(keys):
            job_id = await self._queue.add_job(
                key.league_id,
                key.season_id,
                priority,
                trigger=trigger,
                description=description,
            )
            job_ids.append(job_id)
        return LifecycleResult(outcome=LifecycleOutcome.ENQUEUED, job_ids=job_ids, validation=validation)

    @staticmethod
    def _ignored(match: MatchResult, reason: str) -> LifecycleResult:
        logger.debug(f"Ignoring change of match {match.match_id}: {reason}")
        return LifecycleResult(outcome=LifecycleOutcome.IGNORED, reason=reason)
