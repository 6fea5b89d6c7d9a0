#!/usr/bin/env python3
"""
Create the MindfulCare tables directly (local SQLite or a fresh database).
Use `alembic upgrade head` for managed environments.
"""

import asyncio
import os
import sys
from pathlib import Path

import sqlalchemy as sa

# Make the project importable when run from anywhere
sys.path.insert(0, str(Path(__file__).parent))


async def init_database() -> bool:
    """Create all tables and check the connection."""
    from mindfulcare.core.logging import get_logger, setup_logging
    from mindfulcare.db.base import init_db
    from mindfulcare.db.session import AsyncSessionLocal
    from sqlalchemy.exc import SQLAlchemyError

    setup_logging(debug=True)
    logger = get_logger("init_db")

    Path("data").mkdir(exist_ok=True)

    try:
        await init_db()
        async with AsyncSessionLocal() as session:
            result = await session.execute(sa.text("SELECT 1"))
            ok = result.scalar() == 1
    except SQLAlchemyError as e:
        logger.error("database_init_failed", error=str(e))
        return False

    logger.info("database_initialized", connection_ok=ok)
    return ok


if __name__ == "__main__":
    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./data/mindfulcare.db")

    if not asyncio.run(init_database()):
        sys.exit(1)
