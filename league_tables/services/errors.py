"""
积分榜自动化异常体系

分类：
- MatchValidationError: 用户可修正的数据错误，同步返回，绝不入队
- TransientInfrastructureError: 数据库/网络抖动，自动退避重试
- JobTimeoutError: 任务超出时间预算，按瞬时错误处理
- CalculationError: 计算过程中数据形态异常，任务失败，表格保持不变
- DeadLetterExhaustion: 重试耗尽，需要人工介入
- RollbackFailure: 快照恢复失败（校验和不匹配或写入失败），原表保持不变
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError


class TableAutomationError(Exception):
    """所有自动化异常的基类，携带结构化上下文"""

    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
            **self.context,
        }


class MatchValidationError(TableAutomationError):
    """比赛结果校验失败"""

    def __init__(self, message: str, issues: Optional[List[Any]] = None, **context: Any):
        super().__init__(message, **context)
        self.issues = issues or []


class TransientInfrastructureError(TableAutomationError):
    """可重试的基础设施错误"""

    retryable = True


class JobTimeoutError(TransientInfrastructureError):
    """任务执行超时"""


class CalculationError(TableAutomationError):
    """积分榜计算时遇到无法处理的数据"""


class DeadLetterExhaustion(TableAutomationError):
    """任务重试次数耗尽，已转入死信队列"""


class RollbackFailure(TableAutomationError):
    """快照恢复失败，线上表格未被修改"""


class SnapshotNotFoundError(TableAutomationError):
    """快照不存在"""


class JobNotFoundError(TableAutomationError):
    """任务不存在"""


class LeagueNotFoundError(TableAutomationError):
    """联赛不存在"""


class NoActiveSeasonError(TableAutomationError):
    """未指定赛季且没有当前赛季"""


# 可重试的底层异常类型
_TRANSIENT_TYPES = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


def is_retryable(exc: BaseException) -> bool:
    """判断异常是否值得重试"""
    if isinstance(exc, TableAutomationError):
        return exc.retryable
    return isinstance(exc, _TRANSIENT_TYPES)


def classify_error(exc: BaseException, **context: Any) -> TableAutomationError:
    """
    将任意异常归类为自动化异常

    已经是 TableAutomationError 的原样返回（补充上下文），
    数据库/网络/超时类归为瞬时错误，其余一律视为计算错误。
    """
    if isinstance(exc, TableAutomationError):
        for key, value in context.items():
            exc.context.setdefault(key, value)
        return exc

    message = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, asyncio.TimeoutError):
        return JobTimeoutError(message, **context)
    if isinstance(exc, _TRANSIENT_TYPES):
        return TransientInfrastructureError(message, **context)
    return CalculationError(message, **context)
