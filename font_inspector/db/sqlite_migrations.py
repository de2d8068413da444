"""Database schema creation and versioning.

All CREATE TABLE statements for projects and inspections.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("fontinspector.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── Projects ───────────────────────────────────────────────────────
-- inspection_ids_json is a JSON array used as a set.
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

-- ── Inspections ────────────────────────────────────────────────────
-- project_id is a plain back-reference, no foreign key.
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


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)

    await db.executescript(_TABLES)

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info("Migrations complete: schema version %s", SCHEMA_VERSION)
