"""Database connection factory.

Provides singleton async connection to SQLite (default) with WAL mode.
Backend selection via FONTINSPECTOR_DB_BACKEND env var.
"""
from __future__ import annotations

import logging
from typing import Union, Any

import aiosqlite
import asyncpg

from font_inspector import config

logger = logging.getLogger("fontinspector.db")

# Type alias for DB connection/pool
DbConnection = Union[aiosqlite.Connection, Any]  # Any to support asyncpg.Pool

_connection: DbConnection | None = None


async def get_connection() -> DbConnection:
    """Return the singleton database connection/pool, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    if config.DB_BACKEND == "postgres":
        logger.info("Connecting to PostgreSQL: %s", config.DATABASE_URL)
        _connection = await asyncpg.create_pool(config.DATABASE_URL)
        return _connection

    config.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(config.DB_PATH))
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info("Database connection established: %s", config.DB_PATH)
    _connection = conn
    return _connection


def is_connected() -> bool:
    return _connection is not None


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")
