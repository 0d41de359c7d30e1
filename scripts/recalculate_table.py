#!/usr/bin/env python3
"""
手动重算积分榜

用法：
    python scripts/recalculate_table.py BL1 --season 2024
    python scripts/recalculate_table.py --all
"""
import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger

from league_tables.infra.db.session import create_engine, create_session_factory, dispose_engine
from league_tables.services.queue_manager import JobStatus
from league_tables.services.runtime import build_automation
from league_tables.shared.config import get_settings

logger.remove()
logger.add(sys.stderr, level="INFO", format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}")


async def recalculate(league_id: str = None, season_id: str = None, run_all: bool = False):
    settings = get_settings()
    engine = create_engine(settings.db.default)
    automation = build_automation(create_session_factory(engine), settings.automation)

    try:
        if run_all:
            jobs = await automation.admin.trigger_all_leagues(season_id, description="CLI recalculation")
        else:
            jobs = [await automation.admin.trigger_recalculation(league_id, season_id, description="CLI recalculation")]
        logger.info(f"Queued {len(jobs)} jobs, processing...")

        await automation.queue.process_queue()

        for ref in jobs:
            job = automation.queue.get_job(ref["job_id"])
            if job is None:
                continue
            if job.status == JobStatus.COMPLETED:
                logger.success(f"{job.league_id}/{job.season_id}: {job.result}")
            else:
                logger.error(f"{job.league_id}/{job.season_id}: {job.status.value} - {job.last_error}")

        metrics = automation.queue.get_metrics()
        logger.info(
            f"Done: {metrics['total_completed']} completed, "
            f"{metrics['total_dead_lettered']} dead-lettered, {metrics['total_retries']} retries"
        )
    finally:
        await automation.shutdown()
        await dispose_engine(engine)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="积分榜手动重算工具")
    parser.add_argument("league_id", nargs="?", help="联赛 ID")
    parser.add_argument("--season", dest="season_id", help="赛季 ID（默认当前赛季）")
    parser.add_argument("--all", dest="run_all", action="store_true", help="重算所有联赛")
    args = parser.parse_args()

    if not args.run_all and not args.league_id:
        parser.error("league_id is required unless --all is given")

    asyncio.run(recalculate(args.league_id, args.season_id, args.run_all))
