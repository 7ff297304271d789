"""Script to initialize the database."""

import asyncio

from sqlalchemy import text

from patientflow.config import settings
from patientflow.database import engine
from patientflow.models import metadata


async def init_db() -> None:
    """Create all tables directly from the table metadata (no migrations)."""
    async with engine.begin() as conn:
        if not settings.is_sqlite:
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
