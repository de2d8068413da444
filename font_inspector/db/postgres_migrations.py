"""PostgreSQL schema creation and versioning."""
from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger("fontinspector.db")

SCHEMA_VERSION = 1

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS projects (
    id                  TEXT PRIMARY KEY,
    name                TEXT NOT NULL,
    description         TEXT NOT NULL DEFAULT '',
    inspection_ids_json TEXT NOT NULL DEFAULT '[]',
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_projects_name       ON projects(name);
CREATE INDEX IF NOT EXISTS idx_projects_updated_at ON projects(updated_at DESC);

CREATE TABLE IF NOT EXISTS inspections (
    id                          TEXT PRIMARY KEY,
    url                         TEXT NOT NULL,
    project_id                  TEXT,
    status                      TEXT NOT NULL DEFAULT 'pending',
    progress                    INTEGER NOT NULL DEFAULT 0,
    error                       TEXT,
    downloaded_fonts_json       TEXT NOT NULL DEFAULT '[]',
    font_face_declarations_json TEXT NOT NULL DEFAULT '[]',
    active_fonts_json           TEXT NOT NULL DEFAULT '[]',
    timestamp                   TEXT NOT NULL,
    created_at                  TEXT NOT NULL,
    updated_at                  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_inspections_project_id ON inspections(project_id);
CREATE INDEX IF NOT EXISTS idx_inspections_status     ON inspections(status);
CREATE INDEX IF NOT EXISTS idx_inspections_created    ON inspections(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_inspections_url        ON inspections(url);
"""


async def run_migrations(db: asyncpg.Pool | asyncpg.Connection) -> None:
    """Create all tables. Idempotent."""
    await db.execute(_TABLES)
    current_version = await db.fetchval("SELECT MAX(version) FROM schema_version") or 0
    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    await db.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
    logger.info("Postgres migrations complete: schema version %s", SCHEMA_VERSION)
