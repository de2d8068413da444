"""Row <-> model conversion shared by routers, services and the CLI."""
from __future__ import annotations

import json
from typing import Any

from font_inspector.models import (
    ActiveFont,
    DownloadedFont,
    FontFaceDeclaration,
    Inspection,
    Project,
)


def _safe_json_list(raw: Any) -> list:
    if isinstance(raw, list):
        return raw
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


def inspection_ids(row: dict[str, Any] | None) -> list[str]:
    """Decoded inspection-id set of a project row, blanks dropped."""
    if not row:
        return []
    return [str(v) for v in _safe_json_list(row.get("inspection_ids_json")) if str(v or "").strip()]


def project_from_row(row: dict[str, Any]) -> Project:
    return Project(
        id=str(row["id"]),
        name=row["name"],
        description=row.get("description") or "",
        inspectionIds=inspection_ids(row),
        createdAt=row.get("created_at") or "",
        updatedAt=row.get("updated_at") or "",
    )


def _typed_items(raw: Any, model: type) -> list:
    items = []
    for entry in _safe_json_list(raw):
        if isinstance(entry, dict):
            items.append(model(**entry))
    return items


def inspection_from_row(row: dict[str, Any]) -> Inspection:
    return Inspection(
        id=str(row["id"]),
        url=row["url"],
        projectId=row.get("project_id") or None,
        status=row.get("status") or "pending",
        progress=int(row.get("progress") or 0),
        error=row.get("error"),
        downloadedFonts=_typed_items(row.get("downloaded_fonts_json"), DownloadedFont),
        fontFaceDeclarations=_typed_items(row.get("font_face_declarations_json"), FontFaceDeclaration),
        activeFonts=_typed_items(row.get("active_fonts_json"), ActiveFont),
        timestamp=row.get("timestamp") or "",
        createdAt=row.get("created_at") or "",
        updatedAt=row.get("updated_at") or "",
    )
