"""Project/inspection link maintenance API."""
from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from font_inspector.db import connection
from font_inspector.models import RebuildLinksRequest
from font_inspector.operations import OperationTracker
from font_inspector.project_links import ProjectLinkService
from font_inspector.routers.inspections import _get_inspection_queue

links_router = APIRouter(prefix="/api/links", tags=["links"])


async def run_tracked_rebuild(
    service: ProjectLinkService,
    operations: OperationTracker,
    operation_id: str,
    dry_run: bool,
) -> dict:
    await operations.update(operation_id, phase="links", message="Rebuilding project inspection sets")
    try:
        stats = await service.rebuild_links_from_inspections(dry_run=dry_run)
    except Exception as exc:
        await operations.finish(operation_id, status="failed", error=str(exc))
        raise
    await operations.finish(operation_id, status="completed", stats=stats)
    return stats


@links_router.post("/rebuild")
async def rebuild_links(request: Request, background_tasks: BackgroundTasks, body: RebuildLinksRequest):
    """Rebuild every project's inspection set from inspection back-references."""
    queue = _get_inspection_queue(request)
    db = await connection.get_connection()
    service = ProjectLinkService(db)
    operation_id = await queue.start_operation(
        "rebuild_links",
        trigger=body.trigger,
        metadata={"dryRun": bool(body.dryRun)},
    )

    if body.background:
        background_tasks.add_task(run_tracked_rebuild, service, queue.operations, operation_id, body.dryRun)
        return {
            "status": "ok",
            "mode": "background",
            "message": "Link rebuild triggered in background",
            "operationId": operation_id,
        }

    try:
        stats = await run_tracked_rebuild(service, queue.operations, operation_id, body.dryRun)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "status": "ok",
        "mode": "foreground",
        "operationId": operation_id,
        "stats": stats,
        "operation": await queue.get_operation(operation_id),
    }


@links_router.get("/audit")
async def audit_links():
    """Report project/inspection references that disagree."""
    db = await connection.get_connection()
    try:
        return await ProjectLinkService(db).audit_links()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
