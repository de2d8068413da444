"""PostgreSQL implementation of InspectionRepository."""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
import asyncpg

from font_inspector.db.repositories.postgres.projects import _affected


class PostgresInspectionRepository:
    """PostgreSQL-backed inspection storage."""

    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def create(self, inspection_data: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        inspection_id = inspection_data.get("id") or str(uuid.uuid4())
        await self.db.execute(
            """
            INSERT INTO inspections (
                id, url, project_id, status, progress, error,
                downloaded_fonts_json, font_face_declarations_json, active_fonts_json,
                timestamp, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            """,
            inspection_id,
            inspection_data["url"],
            inspection_data.get("projectId") or None,
            inspection_data.get("status", "pending"),
            int(inspection_data.get("progress", 0)),
            inspection_data.get("error"),
            json.dumps(inspection_data.get("downloadedFonts", [])),
            json.dumps(inspection_data.get("fontFaceDeclarations", [])),
            json.dumps(inspection_data.get("activeFonts", [])),
            inspection_data.get("timestamp", now),
            now,
            now,
        )
        return await self.get_by_id(inspection_id) or {}

    async def get_by_id(self, inspection_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM inspections WHERE id = $1", inspection_id)
        return dict(row) if row else None

    async def list_recent(self, offset: int = 0, limit: int = 10) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM inspections ORDER BY created_at DESC, id LIMIT $1 OFFSET $2",
            limit, offset,
        )
        return [dict(r) for r in rows]

    async def count(self) -> int:
        return int(await self.db.fetchval("SELECT COUNT(*) FROM inspections") or 0)

    async def list_by_project(self, project_id: str) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM inspections WHERE project_id = $1 ORDER BY created_at DESC, id",
            project_id,
        )
        return [dict(r) for r in rows]

    async def list_by_ids(self, inspection_ids: list[str]) -> list[dict]:
        if not inspection_ids:
            return []
        rows = await self.db.fetch(
            "SELECT * FROM inspections WHERE id = ANY($1::text[]) ORDER BY created_at, id",
            list(inspection_ids),
        )
        return [dict(r) for r in rows]

    async def list_linked(self) -> list[dict]:
        rows = await self.db.fetch(
            """
            SELECT id, project_id, created_at FROM inspections
            WHERE project_id IS NOT NULL AND project_id <> ''
            ORDER BY created_at, id
            """
        )
        return [dict(r) for r in rows]

    async def update_status(
        self,
        inspection_id: str,
        status: str,
        progress: int | None = None,
        error: str | None = None,
    ) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        result = await self.db.execute(
            """
            UPDATE inspections SET
                status = $2,
                progress = COALESCE($3, progress),
                error = $4,
                updated_at = $5
            WHERE id = $1
            """,
            inspection_id, status, None if progress is None else int(progress), error, now,
        )
        return _affected(result) > 0

    async def save_result(self, inspection_id: str, result: dict, progress: int = 100) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            """
            UPDATE inspections SET
                status = 'completed', progress = $2, error = NULL,
                downloaded_fonts_json = $3, font_face_declarations_json = $4, active_fonts_json = $5,
                timestamp = $6, updated_at = $6
            WHERE id = $1
            """,
            inspection_id,
            int(progress),
            json.dumps(result.get("downloadedFonts", [])),
            json.dumps(result.get("fontFaceDeclarations", [])),
            json.dumps(result.get("activeFonts", [])),
            now,
        )
        return _affected(status) > 0

    async def set_project(self, inspection_id: str, project_id: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            "UPDATE inspections SET project_id = $2, updated_at = $3 WHERE id = $1",
            inspection_id, project_id, now,
        )
        return _affected(status) > 0

    async def clear_project_if(self, inspection_id: str, project_id: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        status = await self.db.execute(
            "UPDATE inspections SET project_id = NULL, updated_at = $3 WHERE id = $1 AND project_id = $2",
            inspection_id, project_id, now,
        )
        return _affected(status) > 0

    async def delete(self, inspection_id: str) -> bool:
        status = await self.db.execute("DELETE FROM inspections WHERE id = $1", inspection_id)
        return _affected(status) > 0

    async def delete_by_project(self, project_id: str) -> int:
        status = await self.db.execute("DELETE FROM inspections WHERE project_id = $1", project_id)
        return _affected(status)

    async def count_by_status(self, project_id: str | None = None) -> dict[str, int]:
        if project_id:
            rows = await self.db.fetch(
                "SELECT status, COUNT(*) AS total FROM inspections WHERE project_id = $1 GROUP BY status",
                project_id,
            )
        else:
            rows = await self.db.fetch("SELECT status, COUNT(*) AS total FROM inspections GROUP BY status")
        return {str(r["status"]): int(r["total"]) for r in rows}
