#!/usr/bin/env python3
"""创建数据库表结构（开发 / 测试环境使用，生产环境的表结构由外部系统维护）"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger

from league_tables.infra.db.session import create_engine, create_schema, dispose_engine
from league_tables.shared.config import get_settings


async def init_db():
    settings = get_settings()
    engine = create_engine(settings.db.default)
    try:
        logger.info(f"Creating schema on {settings.db.default.host}/{settings.db.default.database}")
        await create_schema(engine)
        logger.success("Schema ready")
    finally:
        await dispose_engine(engine)


if __name__ == "__main__":
    asyncio.run(init_db())
