#!/usr/bin/env python3
"""One-shot catch-up sync of transcript directories into the ledger store.

Usage:
  agent-ledger-sync
  agent-ledger-sync --sessions-dir ~/.openclaw/agents/main/sessions --journal 2026-10-18
  agent-ledger-sync --rebuild
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from agent_ledger import config
from agent_ledger.date_utils import parse_date
from agent_ledger.db import connection, sqlite_migrations
from agent_ledger.db.sync_engine import SyncEngine
from agent_ledger.parsers.log_reader import LogReader
from agent_ledger.services.dashboard import DashboardService


async def _run(dirs: list[Path], db_path: Path, journal_date: str | None, rebuild: bool) -> int:
    db = await connection.open_connection(db_path)
    try:
        await sqlite_migrations.run_migrations(db)
        engine = SyncEngine(db, LogReader(dirs))
        await engine.load_state()

        outcome = await (engine.rebuild() if rebuild else engine.sync_all())
        print(
            f"sources={outcome.sources} events={outcome.events} "
            f"skipped_lines={outcome.parse_errors} failed={outcome.failed}"
        )

        if journal_date:
            entry = await DashboardService(engine).get_journal(journal_date)
            print(json.dumps(entry.model_dump(), indent=2))
        return 1 if outcome.failed else 0
    finally:
        await db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync agent transcripts into the ledger store")
    parser.add_argument(
        "--sessions-dir",
        action="append",
        default=[],
        help="Transcript directory (repeatable, default: LEDGER_SESSIONS_DIRS)",
    )
    parser.add_argument("--db", default=str(config.DB_PATH), help="SQLite ledger database path")
    parser.add_argument("--journal", default="", metavar="YYYY-MM-DD", help="Print the journal for this date after syncing")
    parser.add_argument("--rebuild", action="store_true", help="Drop derived ledgers and re-read every source")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    journal_date = None
    if args.journal:
        day = parse_date(args.journal)
        if day is None:
            parser.error(f"invalid --journal date: {args.journal}")
        journal_date = day.isoformat()

    dirs = [Path(d).expanduser() for d in args.sessions_dir] or list(config.SESSIONS_DIRS)
    return asyncio.run(_run(dirs, Path(args.db).expanduser(), journal_date, args.rebuild))


if __name__ == "__main__":
    raise SystemExit(main())
