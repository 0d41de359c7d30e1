"""时间工具：核心组件通过注入 clock 获取当前时间，测试中可替换为固定时钟"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
