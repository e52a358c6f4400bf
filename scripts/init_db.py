"""
Initialize the database schema from the SQLAlchemy models.

Creates the btree_gist extension first: the appointment overlap exclusion
constraint indexes an integer column and a time range in one GiST index.

Usage:
    export DATABASE_URL="postgresql+asyncpg://localhost:5432/kyros"
    python scripts/init_db.py
"""
import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "Backend"))

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from kyros import models  # noqa: F401  registers the tables on Base.metadata
from kyros.core.config import get_settings
from kyros.core.db import Base

DATABASE_URL = os.getenv("DATABASE_URL", get_settings().database_url)


async def init_db():
    print(f"Initializing database: {DATABASE_URL}")
    engine = create_async_engine(DATABASE_URL, echo=True)

    try:
        async with engine.begin() as conn:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist"))
            await conn.run_sync(Base.metadata.create_all)
        print("Database initialized.")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
