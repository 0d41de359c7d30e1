"""
数据库会话管理

功能：
1. 根据配置创建异步数据库引擎（带连接池优化）
2. 提供会话工厂（显式传递给 Repository / AuditTrail，不使用全局单例）
3. 建表（开发与测试环境）
4. 连接池监控
"""
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from league_tables.infra.db.models import Base
from league_tables.shared.config import DbConnection

logger = logging.getLogger(__name__)


# ============ 连接池配置 ============
#
# pool_size: 连接池中保持的连接数
# max_overflow: 超出 pool_size 后允许的额外连接数
# pool_timeout: 等待获取连接的超时时间（秒）
# pool_recycle: 连接回收时间（秒），防止数据库断开长时间空闲连接
# pool_pre_ping: 每次使用连接前检查连接是否有效
#
# SQLite（测试环境）不支持这些参数，直接跳过
#

def create_engine(conn: DbConnection, echo: bool = False) -> AsyncEngine:
    """
    创建异步引擎

    Args:
        conn: 数据库连接配置
        echo: 是否打印 SQL（生产环境关闭）
    """
    url = conn.build_url()

    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo)
        logger.info("Database engine created (sqlite)")
        return engine

    engine = create_async_engine(
        url,
        echo=echo,
        pool_size=conn.pool_size,
        max_overflow=conn.max_overflow,
        pool_timeout=conn.pool_timeout,
        pool_recycle=conn.pool_recycle,
        pool_pre_ping=True,  # 连接健康检查
    )
    logger.info(
        f"Database engine created: pool_size={conn.pool_size}, "
        f"max_overflow={conn.max_overflow}, pool_timeout={conn.pool_timeout}s, "
        f"pool_recycle={conn.pool_recycle}s"
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    """
    创建会话工厂

    供 Service 层使用：
        async with session_factory() as session:
            async with session.begin():
                ...
    """
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """按 ORM 定义建表（已存在的表会跳过）"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


async def dispose_engine(engine: AsyncEngine):
    """
    关闭数据库引擎（应用关闭时调用）
    """
    await engine.dispose()
    logger.info("Database engine disposed")
