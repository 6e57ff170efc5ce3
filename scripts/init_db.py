import asyncio
import os
import sys
from dotenv import load_dotenv
from loguru import logger

# Add project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Load environment variables from .env file
load_dotenv()

from sqlalchemy import inspect

from chatstream.core.config import settings
from chatstream.database.session import engine, init_models


async def main():
    """Creates the conversation tables if they do not exist yet."""
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL not found in environment variables or .env file.")

    logger.info(f"Initializing database schema on {engine.url.render_as_string(hide_password=True)}")
    await init_models()

    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    logger.info(f"Tables present: {', '.join(sorted(tables))}")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
