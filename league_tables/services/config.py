"""
服务层配置

统一管理计算规则与触发优先级等常量，避免硬编码
（运行期可调的参数见 league_tables.shared.config.AutomationConfig）
"""
from dataclasses import dataclass

from league_tables.services.schemas import JobPriority


@dataclass
class StandingsConfig:
    """积分计算配置"""

    # 积分计算
    POINTS_PER_WIN: int = 3
    POINTS_PER_DRAW: int = 1
    POINTS_PER_LOSS: int = 0

    # 单次计算性能告警阈值（毫秒）
    WARNING_THRESHOLD_MS: int = 1000


@dataclass
class TriggerConfig:
    """各触发来源的默认优先级"""

    GAME_RESULT_PRIORITY: JobPriority = JobPriority.NORMAL
    GAME_DELETED_PRIORITY: JobPriority = JobPriority.NORMAL
    MANUAL_PRIORITY: JobPriority = JobPriority.HIGH


@dataclass
class HealthConfig:
    """队列健康判定阈值"""

    MAX_PENDING_JOBS: int = 50
    MAX_DEAD_LETTER_JOBS: int = 10
    STUCK_AFTER_SECONDS: int = 300  # 5分钟没有任务完成视为卡住
    MAX_ERROR_RATE: float = 50.0  # 百分比


# 全局配置实例
standings_config = StandingsConfig()
trigger_config = TriggerConfig()
health_config = HealthConfig()
