"""全局配置加载与强类型定义。
该模块负责读取 config/ 目录下的 YAML 文件，并映射为 Pydantic 模型。
"""
from __future__ import annotations

import functools
import pathlib
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

# 定位到项目根目录
BASE_DIR = pathlib.Path(__file__).resolve().parents[2]
CONFIG_DIR = BASE_DIR / "config"


def _load_yaml(filename: str) -> Dict[str, Any]:
    """辅助函数：安全加载 YAML 文件"""
    path = CONFIG_DIR / filename
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# --- 1. DB Config Model ---
class DbConnection(BaseModel):
    driver: str = "postgresql+asyncpg"
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    database: str = "league_tables"
    # 显式连接串优先（测试环境可直接填 sqlite+aiosqlite:///...）
    url: Optional[str] = None

    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800  # 30分钟

    def build_url(self) -> str:
        if self.url:
            return self.url
        return (
            f"{self.driver}://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class DbConfig(BaseModel):
    default: DbConnection = Field(default_factory=DbConnection)


# --- 2. Service Config Model ---
class ApiConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    enable_docs: bool = True
    # 管理端（CMS 后台）所在域名
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class ServiceConfig(BaseModel):
    api: ApiConfig = Field(default_factory=ApiConfig)


# --- 3. Automation Config Model ---
class BackoffConfig(BaseModel):
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    jitter: bool = True


class QueueConfig(BaseModel):
    enabled: bool = True
    concurrency: int = Field(default=3, ge=1, le=64)
    max_retries: int = Field(default=3, ge=0)
    job_timeout_seconds: float = Field(default=30.0, gt=0)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)

    # 历史与保留策略
    history_size: int = Field(default=200, ge=1)
    max_completed_jobs: int = Field(default=100, ge=0)
    max_failed_jobs: int = Field(default=50, ge=0)
    job_retention_hours: float = Field(default=24.0, gt=0)


class SnapshotConfig(BaseModel):
    enabled: bool = True
    storage_directory: str = "./snapshots"
    max_snapshots: int = Field(default=10, ge=1)
    max_age_days: float = Field(default=30.0, gt=0)
    compression: bool = False
    checksum_validation: bool = True
    # 恢复前先为当前表格留一份备份
    backup_before_restore: bool = True


class FeatureFlags(BaseModel):
    # 关闭后进入“仅手动”模式：生命周期钩子只做校验，不入队
    automatic_calculation: bool = True
    queue_processing: bool = True
    snapshot_creation: bool = True


class AutomationConfig(BaseModel):
    queue: QueueConfig = Field(default_factory=QueueConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)


# --- 全局 Settings 聚合 ---
class Settings(BaseSettings):
    app_name: str = "League Table Automation"
    app_version: str = "0.1.0"
    environment: str = "dev"

    db: DbConfig = Field(default_factory=lambda: DbConfig(**_load_yaml("db.yaml")))
    service: ServiceConfig = Field(default_factory=lambda: ServiceConfig(**_load_yaml("service.yaml")))
    automation: AutomationConfig = Field(
        default_factory=lambda: AutomationConfig(**_load_yaml("automation.yaml"))
    )

    class Config:
        env_prefix = "LEAGUE_TABLES_"
        env_nested_delimiter = "__"


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """获取全局单例配置。"""
    return Settings()
