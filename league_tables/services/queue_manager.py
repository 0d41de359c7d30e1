"""
QueueManager - 积分榜计算任务队列

职责：
1. 去重：同一 联赛+赛季 任意时刻最多一个待处理/处理中的任务
2. 优先级调度：高优先级先执行，同优先级按提交顺序（FIFO）
3. 固定大小的 worker 池并发执行，不同联赛赛季可并行
4. 同一 联赛+赛季 通过 asyncio.Lock 严格串行
5. 超时、指数退避重试、死信队列
6. 指标、健康检查、有限长度的执行历史

状态流转：
    pending → processing → completed
                         → failed → pending（退避后重试）
                         → dead_letter（重试耗尽或不可重试错误）

注意：
- 所有簿记字段只在 asyncio.Condition 保护下修改
- 暂停只停止派发新任务，执行中的任务会正常结束
"""
from __future__ import annotations

import asyncio
import contextlib
import heapq
import itertools
import logging
import random
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from league_tables.services.audit import AuditCategory, AuditTrail
from league_tables.services.config import health_config
from league_tables.services.errors import (
    DeadLetterExhaustion,
    JobNotFoundError,
    JobTimeoutError,
    TableAutomationError,
    classify_error,
)
from league_tables.services.schemas import JobPriority, LeagueSeasonKey
from league_tables.shared.clock import Clock, utcnow
from league_tables.shared.config import QueueConfig

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"
    CANCELLED = "cancelled"


_FINISHED = (JobStatus.COMPLETED, JobStatus.DEAD_LETTER, JobStatus.CANCELLED)


# ==================== 数据类定义 ====================

@dataclass
class CalculationJob:
    """一次积分榜重算任务"""
    job_id: str
    league_id: str
    season_id: str
    priority: JobPriority
    created_at: datetime
    status: JobStatus = JobStatus.PENDING
    trigger: str = "manual"
    description: Optional[str] = None
    retry_count: int = 0
    timeout_count: int = 0
    max_retries: int = 3
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    error_history: List[Dict[str, Any]] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None

    # 执行期间收到同一联赛赛季的新请求：结束后再跑一次
    rerun_requested: bool = False
    rerun_priority: Optional[JobPriority] = None

    # 调度内部状态
    seq: int = field(default=0, repr=False)
    queued: bool = field(default=False, repr=False)

    @property
    def key(self) -> LeagueSeasonKey:
        return LeagueSeasonKey(self.league_id, self.season_id)

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.PROCESSING)

    def to_dict(self) -> dict:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "job_id": self.job_id,
            "league_id": self.league_id,
            "season_id": self.season_id,
            "priority": self.priority.name.lower(),
            "status": self.status.value,
            "trigger": self.trigger,
            "description": self.description,
            "retry_count": self.retry_count,
            "timeout_count": self.timeout_count,
            "max_retries": self.max_retries,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "next_retry_at": _iso(self.next_retry_at),
            "last_error": self.last_error,
            "error_history": list(self.error_history),
            "result": self.result,
            "duration_ms": self.duration_ms,
            "rerun_requested": self.rerun_requested,
        }


@dataclass
class QueueMetrics:
    """队列累计指标"""
    total_submitted: int = 0
    total_deduplicated: int = 0
    total_processed: int = 0  # 最终结果数（完成 + 死信）
    total_completed: int = 0
    total_dead_lettered: int = 0
    total_attempts: int = 0
    total_retries: int = 0
    total_timeouts: int = 0
    total_processing_ms: float = 0.0
    last_processed_at: Optional[datetime] = None

    @property
    def average_processing_ms(self) -> float:
        if not self.total_completed:
            return 0.0
        return self.total_processing_ms / self.total_completed

    @property
    def success_rate(self) -> float:
        if not self.total_processed:
            return 0.0
        return self.total_completed / self.total_processed * 100

    @property
    def error_rate(self) -> float:
        if not self.total_processed:
            return 0.0
        return self.total_dead_lettered / self.total_processed * 100

    def to_dict(self) -> dict:
        return {
            "total_submitted": self.total_submitted,
            "total_deduplicated": self.total_deduplicated,
            "total_processed": self.total_processed,
            "total_completed": self.total_completed,
            "total_dead_lettered": self.total_dead_lettered,
            "total_attempts": self.total_attempts,
            "total_retries": self.total_retries,
            "total_timeouts": self.total_timeouts,
            "average_processing_ms": round(self.average_processing_ms, 2),
            "success_rate": round(self.success_rate, 2),
            "error_rate": round(self.error_rate, 2),
            "last_processed_at": self.last_processed_at.isoformat() if self.last_processed_at else None,
        }


JobExecutor = Callable[[CalculationJob], Awaitable[Any]]


class QueueManager:
    """
    计算任务队列

    用法：
        manager = QueueManager(service.run_job, settings.automation.queue, audit=audit)
        await manager.start()
        job_id = await manager.add_job("BL1", "2024", JobPriority.NORMAL, trigger="game_result")
        ...
        await manager.stop()
    """

    def __init__(
        self,
        executor: JobExecutor,
        config: QueueConfig,
        audit: Optional[AuditTrail] = None,
        clock: Clock = utcnow,
        rng: Optional[random.Random] = None,
        health=health_config,
    ):
        self._executor = executor
        self._config = config
        self._audit = audit
        self._clock = clock
        self._rng = rng or random.Random()
        self._health = health

        self._cond = asyncio.Condition()
        self._jobs: Dict[str, CalculationJob] = {}
        self._active: Dict[LeagueSeasonKey, str] = {}
        self._heap: List[Tuple[int, int, str]] = []
        self._dead_letter: Dict[str, CalculationJob] = {}
        self._history: Deque[Dict[str, Any]] = deque(maxlen=config.history_size)
        self._key_locks: Dict[LeagueSeasonKey, asyncio.Lock] = {}
        self._lock_users: Dict[LeagueSeasonKey, int] = {}
        self._seq = itertools.count()

        self._workers: List[asyncio.Task] = []
        self._retry_tasks: Dict[str, asyncio.Task] = {}
        self._processing = 0
        self._paused = False
        self._stopping = False
        self._started_at: Optional[datetime] = None

        self.metrics = QueueMetrics()

    # ==================== 提交 ====================

    async def add_job(
        self,
        league_id: str,
        season_id: str,
        priority: JobPriority = JobPriority.NORMAL,
        trigger: str = "manual",
        description: Optional[str] = None,
    ) -> str:
        """
        提交重算任务（去重）

        - 已有待处理任务：优先级更高时原地提升，否则忽略
        - 已有处理中任务：标记结束后再跑一次
        - 否则创建新任务

        Returns:
            负责该联赛赛季的任务 ID
        """
        priority = JobPriority.parse(priority)
        key = LeagueSeasonKey(str(league_id), str(season_id))
        events: List[Tuple[CalculationJob, str, Dict[str, Any]]] = []

        async with self._cond:
            self.metrics.total_submitted += 1
            existing_id = self._active.get(key)
            if existing_id is not None:
                job = self._jobs[existing_id]
                self.metrics.total_deduplicated += 1
                if job.status == JobStatus.PENDING:
                    if priority > job.priority:
                        old = job.priority
                        job.priority = priority
                        if job.queued:
                            heapq.heappush(self._heap, (-job.priority, job.seq, job.job_id))
                        self._cond.notify_all()
                        events.append((job, "escalated", {"from": old.name.lower(), "to": priority.name.lower()}))
                        logger.info(f"Escalated job {job.job_id} for {key} to {priority.name}")
                else:
                    job.rerun_requested = True
                    if job.rerun_priority is None or priority > job.rerun_priority:
                        job.rerun_priority = priority
                    events.append((job, "rerun_requested", {"trigger": trigger}))
                job_id = existing_id
            else:
                job = self._enqueue_locked(key, priority, trigger, description)
                events.append((job, "created", {"priority": priority.name.lower(), "trigger": trigger}))
                job_id = job.job_id

        for job, action, detail in events:
            await self._record(job, action, detail)
        return job_id

    def _enqueue_locked(
        self,
        key: LeagueSeasonKey,
        priority: JobPriority,
        trigger: str,
        description: Optional[str],
    ) -> CalculationJob:
        job = CalculationJob(
            job_id=f"job_{uuid.uuid4().hex[:16]}",
            league_id=key.league_id,
            season_id=key.season_id,
            priority=priority,
            created_at=self._clock(),
            trigger=trigger,
            description=description,
            max_retries=self._config.max_retries,
            seq=next(self._seq),
        )
        self._jobs[job.job_id] = job
        self._active[key] = job.job_id
        self._push_locked(job)
        logger.debug(
            f"Queued job {job.job_id} for {key} ({priority.name}, {trigger})",
            extra={"job_id": job.job_id, "league_id": key.league_id, "season_id": key.season_id},
        )
        return job

    def _push_locked(self, job: CalculationJob) -> None:
        job.queued = True
        job.next_retry_at = None
        heapq.heappush(self._heap, (-job.priority, job.seq, job.job_id))
        self._cond.notify_all()

    def _pop_locked(self) -> Optional[CalculationJob]:
        while self._heap:
            neg_priority, _, job_id = heapq.heappop(self._heap)
            job = self._jobs.get(job_id)
            # 过期条目（已提升优先级、已取消、已清理）直接丢弃
            if job is None or not job.queued or job.status != JobStatus.PENDING or job.priority != -neg_priority:
                continue
            job.queued = False
            return job
        return None

    # ==================== 生命周期 ====================

    async def start(self) -> None:
        """启动 worker 池（已启动时无操作）"""
        if not self._config.enabled:
            logger.warning("Queue processing is disabled by configuration; workers not started")
            return
        if self.is_running:
            return
        self._stopping = False
        self._started_at = self._clock()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"table-queue-worker-{i}")
            for i in range(self._config.concurrency)
        ]
        logger.info(f"Queue started with {self._config.concurrency} workers")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        停止 worker 池

        执行中的任务会正常结束（超过 timeout 秒则取消）；
        等待退避的任务重新放回队列，下次 start 后继续执行。
        """
        async with self._cond:
            self._stopping = True
            for job_id, task in list(self._retry_tasks.items()):
                task.cancel()
                job = self._jobs.get(job_id)
                if job is not None and job.status == JobStatus.PENDING and not job.queued:
                    self._push_locked(job)
            self._retry_tasks.clear()
            self._cond.notify_all()

        if self._workers:
            done, pending = await asyncio.wait(self._workers, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        self._workers = []
        logger.info("Queue stopped")

    async def process_queue(self) -> None:
        """
        处理队列直到没有待处理/处理中/等待重试的任务

        队列暂停或被配置禁用时立即返回。
        """
        if not self._config.enabled:
            logger.warning("process_queue called while queue processing is disabled")
            return
        await self.start()
        async with self._cond:
            await self._cond.wait_for(lambda: self._paused or not self._active)

    async def pause(self) -> None:
        async with self._cond:
            self._paused = True
        logger.info("Queue paused")

    async def resume(self) -> None:
        async with self._cond:
            self._paused = False
            self._cond.notify_all()
        logger.info("Queue resumed")

    async def clear_queue(self) -> int:
        """取消所有待处理任务（执行中的任务不受影响），返回取消数"""
        cancelled: List[CalculationJob] = []
        async with self._cond:
            now = self._clock()
            for job in list(self._jobs.values()):
                if job.status != JobStatus.PENDING:
                    continue
                job.status = JobStatus.CANCELLED
                job.queued = False
                job.completed_at = now
                self._active.pop(job.key, None)
                task = self._retry_tasks.pop(job.job_id, None)
                if task is not None:
                    task.cancel()
                cancelled.append(job)
            self._heap = []
            self._cond.notify_all()

        for job in cancelled:
            await self._record(job, "cancelled", {})
        if cancelled:
            logger.info(f"Cleared {len(cancelled)} pending jobs")
        return len(cancelled)

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._workers)

    @property
    def is_paused(self) -> bool:
        return self._paused

    @contextlib.asynccontextmanager
    async def key_lock(self, league_id: str, season_id: str) -> AsyncIterator[None]:
        """
        持有某联赛赛季的互斥锁（计算任务、快照恢复等共用）

        用法：
            async with manager.key_lock("BL1", "2024"):
                ...

        没有持有者或等待者时锁对象即被回收。
        """
        key = LeagueSeasonKey(str(league_id), str(season_id))
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._key_locks[key]

    # ==================== 执行 ====================

    async def _worker(self, index: int) -> None:
        while True:
            async with self._cond:
                job = None
                while job is None:
                    if self._stopping:
                        return
                    if not self._paused:
                        job = self._pop_locked()
                    if job is None:
                        await self._cond.wait()
                job.status = JobStatus.PROCESSING
                job.started_at = self._clock()
                self._processing += 1
                self.metrics.total_attempts += 1

            await self._execute(job, index)

    async def _execute(self, job: CalculationJob, worker_index: int) -> None:
        error: Optional[TableAutomationError] = None
        result: Any = None

        started = time.perf_counter()
        try:
            await self._record(job, "processing", {"attempt": job.retry_count + 1, "worker": worker_index})
            async with self.key_lock(job.league_id, job.season_id):
                result = await asyncio.wait_for(
                    self._executor(job),
                    timeout=self._config.job_timeout_seconds,
                )
        except asyncio.CancelledError:
            # worker 在出结果之前被取消：任务放回队列，等待下次启动
            self._requeue_cancelled(job)
            raise
        except Exception as exc:
            error = classify_error(
                exc,
                job_id=job.job_id,
                league_id=job.league_id,
                season_id=job.season_id,
            )
        duration_ms = (time.perf_counter() - started) * 1000

        if error is None:
            finish = self._on_success(job, result, duration_ms)
        else:
            finish = self._on_failure(job, error, duration_ms)
        # 已有结果：worker 被取消也要把任务状态落定
        await asyncio.shield(finish)
        self._apply_retention()

    def _requeue_cancelled(self, job: CalculationJob) -> None:
        # 同步执行，无需持有 Condition；下次 start 的 worker 会取到它
        self._processing -= 1
        job.status = JobStatus.PENDING
        if job.rerun_requested:
            if job.rerun_priority is not None and job.rerun_priority > job.priority:
                job.priority = job.rerun_priority
            job.rerun_requested = False
            job.rerun_priority = None
        job.started_at = None
        job.queued = True
        heapq.heappush(self._heap, (-job.priority, job.seq, job.job_id))

    async def _on_success(self, job: CalculationJob, result: Any, duration_ms: float) -> None:
        async with self._cond:
            now = self._clock()
            self._processing -= 1
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.duration_ms = duration_ms
            job.last_error = None
            job.result = result.to_dict() if hasattr(result, "to_dict") else result

            self.metrics.total_processed += 1
            self.metrics.total_completed += 1
            self.metrics.total_processing_ms += duration_ms
            self.metrics.last_processed_at = now

            self._history.appendleft(self._history_entry(job))
            follow_up = self._release_locked(job)
            self._cond.notify_all()

        logger.info(
            f"Job {job.job_id} completed for {job.key} in {duration_ms:.0f}ms",
            extra={"job_id": job.job_id, "league_id": job.league_id, "season_id": job.season_id,
                   "duration_ms": duration_ms},
        )
        await self._record(job, "completed", {"duration_ms": round(duration_ms, 2), "result": job.result})
        if follow_up is not None:
            await self._record(follow_up, "created", {"priority": follow_up.priority.name.lower(),
                                                      "trigger": follow_up.trigger})

    async def _on_failure(self, job: CalculationJob, error: TableAutomationError, duration_ms: float) -> None:
        is_timeout = isinstance(error, JobTimeoutError)
        follow_up = None
        exhaustion: Optional[DeadLetterExhaustion] = None
        delay = 0.0

        async with self._cond:
            now = self._clock()
            self._processing -= 1
            job.status = JobStatus.FAILED
            job.last_error = error.message
            job.duration_ms = duration_ms
            job.error_history.append({
                "message": error.message,
                "type": type(error).__name__,
                "timestamp": now.isoformat(),
                "retry_count": job.retry_count,
                "is_timeout": is_timeout,
                "retryable": error.retryable,
            })
            if is_timeout:
                job.timeout_count += 1
                self.metrics.total_timeouts += 1

            if error.retryable and job.retry_count < job.max_retries:
                delay = self._backoff_delay(job.retry_count)
                job.retry_count += 1
                job.status = JobStatus.PENDING
                # 重试会重新读取比赛数据，执行期间收到的更新已被覆盖
                if job.rerun_requested:
                    if job.rerun_priority is not None and job.rerun_priority > job.priority:
                        job.priority = job.rerun_priority
                    job.rerun_requested = False
                    job.rerun_priority = None
                self.metrics.total_retries += 1
                if self._stopping:
                    # 正在停止：直接放回队列，下次启动时执行
                    self._push_locked(job)
                else:
                    job.next_retry_at = now + timedelta(seconds=delay)
                    self._retry_tasks[job.job_id] = asyncio.create_task(self._retry_after(job, delay))
            else:
                job.status = JobStatus.DEAD_LETTER
                job.completed_at = now
                self._dead_letter[job.job_id] = job
                self.metrics.total_processed += 1
                self.metrics.total_dead_lettered += 1
                self.metrics.last_processed_at = now
                self._history.appendleft(self._history_entry(job))
                exhaustion = DeadLetterExhaustion(
                    f"Job {job.job_id} moved to dead letter after {job.retry_count + 1} attempts: {error.message}",
                    job_id=job.job_id,
                    league_id=job.league_id,
                    season_id=job.season_id,
                    attempts=job.retry_count + 1,
                    last_error=error.message,
                    error_type=type(error).__name__,
                    created_at=job.created_at.isoformat(),
                    failed_at=now.isoformat(),
                )
                follow_up = self._release_locked(job)
            self._cond.notify_all()

        await self._record(job, "failed", error.to_dict())
        if exhaustion is None:
            logger.warning(
                f"Job {job.job_id} for {job.key} failed ({error.message}); "
                f"retry {job.retry_count}/{job.max_retries} in {delay:.2f}s",
                extra={"job_id": job.job_id, "league_id": job.league_id, "season_id": job.season_id},
            )
            await self._record(job, "pending", {"retry_count": job.retry_count, "delay_seconds": round(delay, 3)})
        else:
            logger.error(
                exhaustion.message,
                extra={"job_id": job.job_id, "league_id": job.league_id, "season_id": job.season_id},
            )
            await self._record(job, "dead_letter", exhaustion.to_dict())
        if follow_up is not None:
            await self._record(follow_up, "created", {"priority": follow_up.priority.name.lower(),
                                                      "trigger": follow_up.trigger})

    def _release_locked(self, job: CalculationJob) -> Optional[CalculationJob]:
        """任务结束：释放去重占位；如执行期间有新请求则创建一个后续任务"""
        if self._active.get(job.key) == job.job_id:
            del self._active[job.key]
        if not job.rerun_requested:
            return None
        priority = job.rerun_priority or job.priority
        job.rerun_requested = False
        job.rerun_priority = None
        return self._enqueue_locked(job.key, priority, "coalesced_update", f"Follow-up of {job.job_id}")

    async def _retry_after(self, job: CalculationJob, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._cond:
            self._retry_tasks.pop(job.job_id, None)
            if job.status == JobStatus.PENDING and not job.queued:
                self._push_locked(job)

    def _backoff_delay(self, retry_count: int) -> float:
        """指数退避：base * 2^retry，可选 10% 抖动，上限 max_delay"""
        backoff = self._config.backoff
        delay = backoff.base_delay_seconds * (2 ** retry_count)
        if backoff.jitter:
            delay += self._rng.random() * 0.1 * delay
        return min(delay, backoff.max_delay_seconds)

    # ==================== 死信队列 ====================

    def get_dead_letter_jobs(self) -> List[CalculationJob]:
        return list(self._dead_letter.values())

    async def resubmit_dead_letter(self, job_id: str) -> str:
        """
        重新提交死信任务（重置重试计数）

        若该联赛赛季已有活跃任务，则并入该任务。

        Raises:
            JobNotFoundError: 死信队列中没有该任务
        """
        async with self._cond:
            job = self._dead_letter.pop(job_id, None)
            if job is None:
                raise JobNotFoundError(f"Dead letter job {job_id} not found", job_id=job_id)

            existing_id = self._active.get(job.key)
            if existing_id is not None:
                existing = self._jobs[existing_id]
                if existing.status == JobStatus.PENDING and job.priority > existing.priority:
                    existing.priority = job.priority
                    if existing.queued:
                        heapq.heappush(self._heap, (-existing.priority, existing.seq, existing.job_id))
                elif existing.status == JobStatus.PROCESSING:
                    existing.rerun_requested = True
                target = existing
            else:
                job.status = JobStatus.PENDING
                job.retry_count = 0
                job.timeout_count = 0
                job.last_error = None
                job.started_at = None
                job.completed_at = None
                job.trigger = "dead_letter_resubmit"
                job.seq = next(self._seq)
                self._jobs[job.job_id] = job
                self._active[job.key] = job.job_id
                self._push_locked(job)
                target = job

        logger.info(f"Resubmitted dead letter job {job_id} as {target.job_id}")
        await self._record(job, "resubmitted", {"target_job_id": target.job_id})
        return target.job_id

    async def clear_dead_letter(self) -> int:
        async with self._cond:
            count = len(self._dead_letter)
            self._dead_letter.clear()
        if count:
            logger.info(f"Cleared {count} dead letter jobs")
        return count

    # ==================== 查询 ====================

    def get_job(self, job_id: str) -> Optional[CalculationJob]:
        return self._jobs.get(job_id) or self._dead_letter.get(job_id)

    def get_job_history(self, league_id: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """最近结束的任务（新的在前）"""
        entries = [
            e for e in self._history
            if league_id is None or e["league_id"] == str(league_id)
        ]
        return entries[:limit]

    def get_queue_status(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in JobStatus}
        retry_scheduled = 0
        for job in self._jobs.values():
            counts[job.status.value] += 1
            if job.status == JobStatus.PENDING and job.next_retry_at is not None:
                retry_scheduled += 1
        counts[JobStatus.DEAD_LETTER.value] = len(self._dead_letter)

        return {
            "is_running": self.is_running,
            "is_paused": self._paused,
            "concurrency": self._config.concurrency,
            "queue_depth": counts[JobStatus.PENDING.value],
            "total_jobs": len(self._jobs),
            "pending_jobs": counts[JobStatus.PENDING.value],
            "processing_jobs": counts[JobStatus.PROCESSING.value],
            "completed_jobs": counts[JobStatus.COMPLETED.value],
            "dead_letter_jobs": counts[JobStatus.DEAD_LETTER.value],
            "cancelled_jobs": counts[JobStatus.CANCELLED.value],
            "retry_scheduled_jobs": retry_scheduled,
            "average_processing_ms": round(self.metrics.average_processing_ms, 2),
            "success_rate": round(self.metrics.success_rate, 2),
            "last_processed_at": (
                self.metrics.last_processed_at.isoformat() if self.metrics.last_processed_at else None
            ),
        }

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics.to_dict()

    def get_health_status(self) -> Dict[str, Any]:
        """
        健康检查

        - degraded: 积压过多 / 死信过多 / 已暂停
        - unhealthy: 有待处理任务但长时间没有进展 / 错误率过高
        """
        now = self._clock()
        status = self.get_queue_status()
        issues: List[str] = []
        level = 0  # 0 healthy, 1 degraded, 2 unhealthy

        if status["pending_jobs"] > self._health.MAX_PENDING_JOBS:
            level = max(level, 1)
            issues.append(f"High pending job count: {status['pending_jobs']}")

        if status["dead_letter_jobs"] > self._health.MAX_DEAD_LETTER_JOBS:
            level = max(level, 1)
            issues.append(f"High dead letter job count: {status['dead_letter_jobs']}")

        # 最早仍在等待的工作（排队中或执行中）与最近一次完成，取较晚者作为最后进展
        waiting = [
            j.started_at if j.status == JobStatus.PROCESSING else j.created_at
            for j in self._jobs.values()
            if j.status == JobStatus.PROCESSING or (j.status == JobStatus.PENDING and j.queued)
        ]
        if self.is_running and not self._paused and waiting:
            marks = [min(t for t in waiting if t is not None)]
            if self.metrics.last_processed_at is not None:
                marks.append(self.metrics.last_processed_at)
            idle = (now - max(marks)).total_seconds()
            if idle > self._health.STUCK_AFTER_SECONDS:
                level = 2
                issues.append(f"Queue appears to be stuck - no jobs processed in {idle:.0f}s")

        if self.metrics.error_rate > self._health.MAX_ERROR_RATE:
            level = 2
            issues.append(f"High error rate: {self.metrics.error_rate:.1f}%")

        if self._paused:
            level = max(level, 1)
            issues.append("Queue is paused")

        return {
            "status": ("healthy", "degraded", "unhealthy")[level],
            "timestamp": now.isoformat(),
            "issues": issues,
            "queue_status": status,
            "metrics": self.get_metrics(),
            "active_locks": sum(1 for lock in self._key_locks.values() if lock.locked()),
            "tracked_locks": len(self._key_locks),
        }

    # ==================== 保留策略 ====================

    def _apply_retention(self) -> None:
        """清理超过数量上限或保留时长的已结束任务"""
        cutoff = self._clock() - timedelta(hours=self._config.job_retention_hours)
        finished = [j for j in self._jobs.values() if j.status in _FINISHED]
        finished.sort(key=lambda j: j.completed_at or j.created_at, reverse=True)

        completed = [j for j in finished if j.status == JobStatus.COMPLETED]
        failed = [j for j in finished if j.status != JobStatus.COMPLETED]

        doomed = completed[self._config.max_completed_jobs:] + failed[self._config.max_failed_jobs:]
        doomed += [j for j in finished if (j.completed_at or j.created_at) < cutoff]
        for job in doomed:
            self._jobs.pop(job.job_id, None)

    # ==================== 内部工具 ====================

    @staticmethod
    def _history_entry(job: CalculationJob) -> Dict[str, Any]:
        result = job.result or {}
        return {
            "job_id": job.job_id,
            "league_id": job.league_id,
            "season_id": job.season_id,
            "trigger": job.trigger,
            "status": job.status.value,
            "priority": job.priority.name.lower(),
            "started_at": (job.started_at or job.created_at).isoformat(),
            "completed_at": job.completed_at.isoformat() if job.completed_at else None,
            "duration_ms": round(job.duration_ms, 2) if job.duration_ms is not None else None,
            "retry_count": job.retry_count,
            "error": job.last_error,
            "entries_updated": result.get("entries_updated", 0) if isinstance(result, dict) else 0,
            "description": job.description,
        }

    async def _record(self, job: CalculationJob, action: str, detail: Dict[str, Any]) -> None:
        if self._audit is not None:
            await self._audit.record(
                AuditCategory.JOB,
                action,
                league_id=job.league_id,
                season_id=job.season_id,
                subject_id=job.job_id,
                detail=detail,
            )
