#!/usr/bin/env python3
"""Simple script to create database tables for deployment"""

import asyncio
import logging
import os
import sys

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from disastershield.config import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def create_tables():
    """Create database tables"""
    try:
        logger.info("Starting table creation...")
        logger.info(f"Database URL (masked): {str(settings.database_url)[:50]}...")

        engine = create_async_engine(str(settings.database_url))

        # Test connection first
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection successful")

        # Import models to register them with Base
        from disastershield.db import models  # noqa: F401
        from disastershield.db.database import Base

        logger.info(f"Models imported: {', '.join(sorted(Base.metadata.tables))}")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("All tables created successfully")

        await engine.dispose()
        logger.info("Table creation completed successfully!")
        return True

    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        return False

if __name__ == "__main__":
    success = asyncio.run(create_tables())
    sys.exit(0 if success else 1)
