from pathlib import Path
import logging
from typing import Optional, Set
from .db import Database

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


async def run_migrations(db: Database, migrations_dir: Optional[Path] = None) -> int:
    """
    Apply pending *.sql files in name order. Returns how many were applied.
    """
    directory = migrations_dir or MIGRATIONS_DIR
    if not directory.exists():
        logger.warning(f"Migrations directory {directory} not found; skipping migrations")
        return 0

    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            name TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )
    applied = await _applied_migrations(db)

    count = 0
    for path in sorted(directory.glob("*.sql")):
        if path.name in applied:
            continue
        logger.info(f"Applying migration {path.name}")
        await db.execute(path.read_text())
        await db.execute("INSERT INTO schema_migrations (name) VALUES ($1)", path.name)
        count += 1

    if not count:
        logger.info("No pending migrations")
    return count


async def _applied_migrations(db: Database) -> Set[str]:
    rows = await db.fetch("SELECT name FROM schema_migrations")
    return {row["name"] for row in rows}
