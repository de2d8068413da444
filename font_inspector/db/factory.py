"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any
import aiosqlite

from font_inspector.db.repositories.projects import SqliteProjectRepository
from font_inspector.db.repositories.inspections import SqliteInspectionRepository


def get_project_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteProjectRepository(db)
    from font_inspector.db.repositories.postgres.projects import PostgresProjectRepository
    return PostgresProjectRepository(db)


def get_inspection_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteInspectionRepository(db)
    from font_inspector.db.repositories.postgres.inspections import PostgresInspectionRepository
    return PostgresInspectionRepository(db)
