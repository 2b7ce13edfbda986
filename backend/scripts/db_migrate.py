"""Apply the CastCue schema migrations.

Usage:
    python db_migrate.py          # Apply all pending migrations
    python db_migrate.py --dry    # List pending migrations without applying
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

# backend/ must be importable for shared.*
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncpg
from dotenv import load_dotenv

from shared.migrations.runner import MigrationRunner

load_dotenv(Path(__file__).resolve().parent.parent / "api" / ".env")

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


async def main() -> None:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL not set. Check api/.env or environment variables.")
        sys.exit(1)

    pool = await asyncpg.create_pool(database_url, min_size=1, max_size=2, statement_cache_size=0)

    try:
        runner = MigrationRunner(pool)

        if "--dry" in sys.argv:
            pending = await runner.list_pending()
            applied = await runner.get_applied()
            print(f"Applied: {len(applied)} | Pending: {len(pending)}")
            for version in pending:
                print(f"  -> {version}")
            if not pending:
                print("Database is up to date.")
        else:
            newly_applied = await runner.run_pending()
            if not newly_applied:
                print("No pending migrations.")
            else:
                print(f"Applied {len(newly_applied)} migration(s): {', '.join(newly_applied)}")
    finally:
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
