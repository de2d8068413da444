"""API router for projects and their inspection links."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from font_inspector.csv_export import project_csv_filename, project_to_csv
from font_inspector.db import connection
from font_inspector.models import (
    Inspection,
    PaginatedResponse,
    Project,
    ProjectCreate,
    ProjectDetail,
    ProjectUpdate,
)
from font_inspector.project_links import EntityNotFoundError, ProjectLinkService
from font_inspector.records import inspection_from_row, project_from_row

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])


async def _service() -> ProjectLinkService:
    db = await connection.get_connection()
    return ProjectLinkService(db)


@projects_router.get("", response_model=PaginatedResponse[Project])
async def list_projects(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List projects, newest first."""
    service = await _service()
    rows = await service.projects.list_all(offset=offset, limit=limit)
    total = await service.projects.count()
    return PaginatedResponse(
        items=[project_from_row(r) for r in rows],
        total=total,
        offset=offset,
        limit=limit,
    )


@projects_router.post("", response_model=Project)
async def create_project(body: ProjectCreate):
    """Create a project; an existing project with the same name is returned instead."""
    service = await _service()
    try:
        row = await service.create_project(body.name, body.description, body.inspectionIds)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return project_from_row(row)


@projects_router.get("/{project_id}", response_model=ProjectDetail)
async def get_project(project_id: str):
    service = await _service()
    row = await service.projects.get_by_id(project_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    inspections = await service.list_project_inspections(project_id)
    project = project_from_row(row)
    return ProjectDetail(
        **project.model_dump(),
        inspections=[inspection_from_row(r) for r in inspections],
        statusCounts=await service.inspections.count_by_status(project_id),
    )


@projects_router.put("/{project_id}", response_model=Project)
async def update_project(project_id: str, body: ProjectUpdate):
    if body.name is not None and not body.name.strip():
        raise HTTPException(status_code=400, detail="Project name cannot be empty")
    service = await _service()
    row = await service.projects.update(project_id, body.model_dump(exclude_none=True))
    if not row:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return project_from_row(row)


@projects_router.delete("/{project_id}")
async def delete_project(project_id: str):
    """Delete a project and every inspection that belongs to it."""
    service = await _service()
    try:
        removed = await service.delete_project(project_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "ok", "projectId": project_id, "deletedInspections": removed}


@projects_router.get("/{project_id}/inspections", response_model=list[Inspection])
async def list_project_inspections(project_id: str):
    service = await _service()
    try:
        rows = await service.list_project_inspections(project_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [inspection_from_row(r) for r in rows]


@projects_router.post("/{project_id}/inspections/{inspection_id}")
async def link_inspection(project_id: str, inspection_id: str):
    """Add an inspection to a project."""
    service = await _service()
    try:
        result = await service.link(project_id, inspection_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", **result}


@projects_router.delete("/{project_id}/inspections/{inspection_id}")
async def unlink_inspection(project_id: str, inspection_id: str):
    """Remove an inspection from a project."""
    service = await _service()
    try:
        result = await service.unlink(project_id, inspection_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok", **result}


@projects_router.get("/{project_id}/export.csv")
async def export_project_csv(project_id: str):
    service = await _service()
    row = await service.projects.get_by_id(project_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    inspections = [inspection_from_row(r) for r in await service.list_project_inspections(project_id)]
    filename = project_csv_filename(row["name"])
    return Response(
        content=project_to_csv(inspections),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
