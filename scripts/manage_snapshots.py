#!/usr/bin/env python3
"""
积分榜快照管理

用法：
    python scripts/manage_snapshots.py list BL1 2024
    python scripts/manage_snapshots.py restore snapshot_BL1_2024_...
    python scripts/manage_snapshots.py cleanup --max-age-days 30
"""
import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger

from league_tables.infra.db.session import create_engine, create_session_factory, dispose_engine
from league_tables.services.errors import TableAutomationError
from league_tables.services.runtime import build_automation
from league_tables.shared.config import get_settings


async def main(args):
    settings = get_settings()
    engine = create_engine(settings.db.default)
    automation = build_automation(create_session_factory(engine), settings.automation)
    store = automation.snapshot_store

    try:
        if args.command == "list":
            snapshots = await store.list_snapshots(args.league_id, args.season_id)
            logger.info(f"{len(snapshots)} snapshots for {args.league_id}/{args.season_id}")
            for s in snapshots:
                print(f"  {s.snapshot_id}  {s.created_at:%Y-%m-%d %H:%M:%S}  "
                      f"{s.entry_count:>3} entries  {s.description}")

        elif args.command == "restore":
            try:
                result = await automation.admin.restore_snapshot(args.snapshot_id)
            except TableAutomationError as e:
                logger.error(f"Restore failed: {e.message}")
                sys.exit(1)
            logger.success(
                f"Restored {result.entries_restored} entries into {result.league_id}/{result.season_id}"
                f" (backup: {result.backup_snapshot_id})"
            )

        elif args.command == "cleanup":
            deleted = await store.delete_old_snapshots(args.max_age_days)
            logger.info(f"Deleted {deleted} snapshots")
    finally:
        await dispose_engine(engine)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="积分榜快照管理工具")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="列出快照")
    p_list.add_argument("league_id")
    p_list.add_argument("season_id")

    p_restore = sub.add_parser("restore", help="从快照恢复")
    p_restore.add_argument("snapshot_id")

    p_cleanup = sub.add_parser("cleanup", help="删除过期快照")
    p_cleanup.add_argument("--max-age-days", type=float, default=None)

    asyncio.run(main(parser.parse_args()))
