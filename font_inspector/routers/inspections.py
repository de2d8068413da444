"""Inspection, queue and page-discovery API."""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import Response

from font_inspector.csv_export import inspection_to_csv
from font_inspector.db import connection
from font_inspector.db.factory import get_inspection_repository
from font_inspector.discovery import discover_pages
from font_inspector.inspection_queue import InspectionQueue, InvalidStatusTransition
from font_inspector.models import (
    DiscoverRequest,
    InspectRequest,
    Inspection,
    PaginatedResponse,
    QueueState,
)
from font_inspector.project_links import EntityNotFoundError, ProjectLinkService
from font_inspector.records import inspection_from_row

inspect_router = APIRouter(prefix="/api", tags=["inspect"])
inspections_router = APIRouter(prefix="/api/inspections", tags=["inspections"])
queue_router = APIRouter(prefix="/api/queue", tags=["queue"])


def _get_inspection_queue(request: Request) -> InspectionQueue:
    queue = getattr(request.app.state, "inspection_queue", None)
    if not queue:
        raise HTTPException(status_code=503, detail="Inspection queue not initialized")
    return queue


@inspect_router.post("/inspect")
async def inspect(request: Request, background_tasks: BackgroundTasks, body: InspectRequest):
    """Queue one or more URLs for inspection, optionally inside a project."""
    queue = _get_inspection_queue(request)
    try:
        submitted = await queue.submit(
            body.urls,
            project_name=body.projectName,
            project_id=body.projectId,
            trigger=body.trigger,
        )
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    operation_id = submitted["operationId"]
    if body.background:
        background_tasks.add_task(queue.run, operation_id, submitted["inspectionIds"])
        return {"status": "ok", "mode": "background", **submitted}

    stats = await queue.run(operation_id, submitted["inspectionIds"])
    rows = await queue.inspections.list_by_ids(submitted["inspectionIds"])
    return {
        "status": "ok",
        "mode": "foreground",
        **submitted,
        "stats": stats,
        "inspections": [inspection_from_row(r).model_dump() for r in rows],
    }


@inspect_router.post("/discover-pages")
async def discover(body: DiscoverRequest):
    """Suggest pages of a site worth inspecting together."""
    pages = await asyncio.to_thread(discover_pages, body.url, body.maxPages)
    return {"url": body.url, "count": len(pages), "pages": pages}


@inspections_router.get("", response_model=PaginatedResponse[Inspection])
async def list_inspections(
    offset: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=200),
):
    """Most recent inspections first."""
    db = await connection.get_connection()
    repo = get_inspection_repository(db)
    rows = await repo.list_recent(offset=offset, limit=limit)
    total = await repo.count()
    return PaginatedResponse(
        items=[inspection_from_row(r) for r in rows],
        total=total,
        offset=offset,
        limit=limit,
    )


@inspections_router.get("/{inspection_id}", response_model=Inspection)
async def get_inspection(inspection_id: str):
    db = await connection.get_connection()
    row = await get_inspection_repository(db).get_by_id(inspection_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"Inspection {inspection_id} not found")
    return inspection_from_row(row)


@inspections_router.delete("/{inspection_id}")
async def delete_inspection(inspection_id: str):
    """Delete an inspection after removing it from its project."""
    db = await connection.get_connection()
    try:
        await ProjectLinkService(db).delete_inspection(inspection_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "ok", "inspectionId": inspection_id}


@inspections_router.post("/{inspection_id}/retry")
async def retry_inspection(
    request: Request,
    background_tasks: BackgroundTasks,
    inspection_id: str,
    background: bool = Query(True),
):
    """Send a failed inspection back through the queue."""
    queue = _get_inspection_queue(request)
    try:
        if background:
            operation_id = await queue.prepare_retry(inspection_id)
            background_tasks.add_task(queue.run, operation_id, [inspection_id])
            return {"status": "ok", "mode": "background", "operationId": operation_id}
        result = await queue.retry(inspection_id)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "ok", "mode": "foreground", **result}


@inspections_router.get("/{inspection_id}/export.csv")
async def export_inspection_csv(inspection_id: str):
    db = await connection.get_connection()
    row = await get_inspection_repository(db).get_by_id(inspection_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"Inspection {inspection_id} not found")
    return Response(
        content=inspection_to_csv(inspection_from_row(row)),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="inspection-{inspection_id}.csv"'},
    )


@queue_router.get("", response_model=QueueState)
async def get_queue(request: Request):
    """Queue items plus whether the queue panel should be shown."""
    return await _get_inspection_queue(request).queue_state()


@queue_router.get("/operations")
async def list_queue_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    """List recent inspection batches and link rebuilds."""
    operations = await _get_inspection_queue(request).list_operations(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@queue_router.get("/operations/{operation_id}")
async def get_queue_operation(request: Request, operation_id: str):
    operation = await _get_inspection_queue(request).get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation
