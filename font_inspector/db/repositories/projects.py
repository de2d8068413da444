"""SQLite implementation of ProjectRepository."""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import aiosqlite


def _unique_ids(values: list[str] | None) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values or []:
        token = str(value or "").strip()
        if not token or token in seen:
            continue
        seen.add(token)
        out.append(token)
    return out


class SqliteProjectRepository:
    """SQLite-backed project storage.

    The inspection set lives in ``inspection_ids_json``; insertion and removal
    are single UPDATE statements so concurrent adds never duplicate an id.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, project_data: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        project_id = project_data.get("id") or str(uuid.uuid4())
        await self.db.execute(
            """INSERT INTO projects (
                id, name, description, inspection_ids_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)""",
            (
                project_id,
                project_data["name"],
                project_data.get("description", ""),
                json.dumps(_unique_ids(project_data.get("inspectionIds"))),
                now,
                now,
            ),
        )
        await self.db.commit()
        return await self.get_by_id(project_id) or {}

    async def get_by_id(self, project_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_by_name(self, name: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM projects WHERE name = ? ORDER BY created_at LIMIT 1", (name,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_all(self, offset: int = 0, limit: int | None = None) -> list[dict]:
        query = "SELECT * FROM projects ORDER BY created_at DESC, id"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = (limit, offset)
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM projects") as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0

    async def update(self, project_id: str, updates: dict) -> dict | None:
        fields: list[str] = []
        params: list = []
        for key, column in (("name", "name"), ("description", "description")):
            if updates.get(key) is not None:
                fields.append(f"{column} = ?")
                params.append(updates[key])
        fields.append("updated_at = ?")
        params.append(datetime.now(timezone.utc).isoformat())
        params.append(project_id)
        async with self.db.execute(
            f"UPDATE projects SET {', '.join(fields)} WHERE id = ?", tuple(params)
        ) as cur:
            changed = cur.rowcount
        await self.db.commit()
        if not changed:
            return None
        return await self.get_by_id(project_id)

    async def delete(self, project_id: str) -> bool:
        async with self.db.execute("DELETE FROM projects WHERE id = ?", (project_id,)) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def add_inspection_id(self, project_id: str, inspection_id: str) -> bool:
        """Set-insert ``inspection_id``. Returns False when the project row is absent."""
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.execute(
            """UPDATE projects
               SET inspection_ids_json = CASE
                       WHEN EXISTS (
                           SELECT 1 FROM json_each(projects.inspection_ids_json)
                           WHERE json_each.value = ?
                       ) THEN inspection_ids_json
                       ELSE json_insert(inspection_ids_json, '$[#]', ?)
                   END,
                   updated_at = ?
               WHERE id = ?""",
            (inspection_id, inspection_id, now, project_id),
        ) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def remove_inspection_id(self, project_id: str, inspection_id: str) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.execute(
            """UPDATE projects
               SET inspection_ids_json = (
                       SELECT COALESCE(json_group_array(json_each.value), '[]')
                       FROM json_each(projects.inspection_ids_json)
                       WHERE json_each.value != ?
                   ),
                   updated_at = ?
               WHERE id = ?""",
            (inspection_id, now, project_id),
        ) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0

    async def replace_inspection_ids(self, project_id: str, inspection_ids: list[str]) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        async with self.db.execute(
            "UPDATE projects SET inspection_ids_json = ?, updated_at = ? WHERE id = ?",
            (json.dumps(_unique_ids(inspection_ids)), now, project_id),
        ) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0
