"""SQLite implementation of InspectionRepository."""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import aiosqlite


class SqliteInspectionRepository:
    """SQLite-backed inspection storage."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, inspection_data: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        inspection_id = inspection_data.get("id") or str(uuid.uuid4())
        await self.db.execute(
            """INSERT INTO inspections (
                id, url, project_id, status, progress, error,
                downloaded_fonts_json, font_face_declarations_json, active_fonts_json,
                timestamp, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
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
            ),
        )
        await self.db.commit()
        return await self.get_by_id(inspection_id) or {}

    async def get_by_id(self, inspection_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM inspections WHERE id = ?", (inspection_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_recent(self, offset: int = 0, limit: int = 10) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM inspections ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            (limit, offset),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM inspections") as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0

    async def list_by_project(self, project_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM inspections WHERE project_id = ? ORDER BY created_at DESC, id",
            (project_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_by_ids(self, inspection_ids: list[str]) -> list[dict]:
        if not inspection_ids:
            return []
        placeholders = ", ".join("?" for _ in inspection_ids)
        async with self.db.execute(
            f"SELECT * FROM inspections WHERE id IN ({placeholders}) ORDER BY created_at, id",
            tuple(inspection_ids),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_linked(self) -> list[dict]:
        """All inspections carrying a project reference, oldest first."""
        async with self.db.execute(
            """SELECT id, project_id, created_at FROM inspections
               WHERE project_id IS NOT NULL AND project_id != ''
               ORDER BY created_at, id"""
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def update_status(
        self,
        inspection_id: str,
        status: str,
        progress: int | None = None,
        error: str | None = None,
    ) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        if progress is None:
            query = "UPDATE inspections SET status = ?, error = ?, updated_at = ? WHERE id = ?"
            params: tuple = (status, error, now, inspection_id)
        else:
            query = "UPDATE inspections SET status = ?, progress = ?, error = ?, updated_at = ? WHERE id = ?"
            params = (status, int(progress), error, now, inspection_id)
        async with self.db.execute(query, params) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def save_result(self, inspection_id: str, result: dict, progress: int = 100) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.execute(
            """UPDATE inspections SET
                status = 'completed', progress = ?, error = NULL,
                downloaded_fonts_json = ?, font_face_declarations_json = ?, active_fonts_json = ?,
                timestamp = ?, updated_at = ?
               WHERE id = ?""",
            (
                int(progress),
                json.dumps(result.get("downloadedFonts", [])),
                json.dumps(result.get("fontFaceDeclarations", [])),
                json.dumps(result.get("activeFonts", [])),
                now,
                now,
                inspection_id,
            ),
        ) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def set_project(self, inspection_id: str, project_id: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.execute(
            "UPDATE inspections SET project_id = ?, updated_at = ? WHERE id = ?",
            (project_id, now, inspection_id),
        ) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def clear_project_if(self, inspection_id: str, project_id: str) -> bool:
        """Clear the back-reference only while it still points at ``project_id``."""
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.execute(
            "UPDATE inspections SET project_id = NULL, updated_at = ? WHERE id = ? AND project_id = ?",
            (now, inspection_id, project_id),
        ) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def delete(self, inspection_id: str) -> bool:
        async with self.db.execute("DELETE FROM inspections WHERE id = ?", (inspection_id,)) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def delete_by_project(self, project_id: str) -> int:
        async with self.db.execute("DELETE FROM inspections WHERE project_id = ?", (project_id,)) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return max(0, changed)

    async def count_by_status(self, project_id: str | None = None) -> dict[str, int]:
        if project_id:
            query = "SELECT status, COUNT(*) AS total FROM inspections WHERE project_id = ? GROUP BY status"
            params: tuple = (project_id,)
        else:
            query = "SELECT status, COUNT(*) AS total FROM inspections GROUP BY status"
            params = ()
        async with self.db.execute(query, params) as cur:
            return {str(r["status"]): int(r["total"]) for r in await cur.fetchall()}
