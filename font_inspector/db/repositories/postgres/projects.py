"""PostgreSQL implementation of ProjectRepository."""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
import asyncpg

from font_inspector.db.repositories.projects import _unique_ids


def _affected(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 1" / "DELETE 0"
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class PostgresProjectRepository:
    """PostgreSQL-backed project storage."""

    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def create(self, project_data: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        project_id = project_data.get("id") or str(uuid.uuid4())
        await self.db.execute(
            """
            INSERT INTO projects (
                id, name, description, inspection_ids_json, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6)
            """,
            project_id,
            project_data["name"],
            project_data.get("description", ""),
            json.dumps(_unique_ids(project_data.get("inspectionIds"))),
            now,
            now,
        )
        return await self.get_by_id(project_id) or {}

    async def get_by_id(self, project_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM projects WHERE id = $1", project_id)
        return dict(row) if row else None

    async def get_by_name(self, name: str) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM projects WHERE name = $1 ORDER BY created_at LIMIT 1", name
        )
        return dict(row) if row else None

    async def list_all(self, offset: int = 0, limit: int | None = None) -> list[dict]:
        if limit is not None:
            rows = await self.db.fetch(
                "SELECT * FROM projects ORDER BY created_at DESC, id LIMIT $1 OFFSET $2",
                limit, offset,
            )
        else:
            rows = await self.db.fetch("SELECT * FROM projects ORDER BY created_at DESC, id")
        return [dict(r) for r in rows]

    async def count(self) -> int:
        return int(await self.db.fetchval("SELECT COUNT(*) FROM projects") or 0)

    async def update(self, project_id: str, updates: dict) -> dict | None:
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            """
            UPDATE projects SET
                name = COALESCE($2, name),
                description = COALESCE($3, description),
                updated_at = $4
            WHERE id = $1
            """,
            project_id,
            updates.get("name"),
            updates.get("description"),
            now,
        )
        if not _affected(status):
            return None
        return await self.get_by_id(project_id)

    async def delete(self, project_id: str) -> bool:
        status = await self.db.execute("DELETE FROM projects WHERE id = $1", project_id)
        return _affected(status) > 0

    async def add_inspection_id(self, project_id: str, inspection_id: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            """
            UPDATE projects
            SET inspection_ids_json = CASE
                    WHEN inspection_ids_json::jsonb ? $2 THEN inspection_ids_json
                    ELSE (inspection_ids_json::jsonb || jsonb_build_array($2::text))::text
                END,
                updated_at = $3
            WHERE id = $1
            """,
            project_id, inspection_id, now,
        )
        return _affected(status) > 0

    async def remove_inspection_id(self, project_id: str, inspection_id: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            """
            UPDATE projects
            SET inspection_ids_json = (inspection_ids_json::jsonb - $2::text)::text,
                updated_at = $3
            WHERE id = $1
            """,
            project_id, inspection_id, now,
        )
        return _affected(status) > 0

    async def replace_inspection_ids(self, project_id: str, inspection_ids: list[str]) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            "UPDATE projects SET inspection_ids_json = $2, updated_at = $3 WHERE id = $1",
            project_id, json.dumps(_unique_ids(inspection_ids)), now,
        )
        return _affected(status) > 0
