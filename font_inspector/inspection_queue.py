"""Inspection queue: status lifecycle, display projection and the batch runner."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable

from font_inspector import config
from font_inspector.db.factory import get_inspection_repository
from font_inspector.inspector import FontInspector, InspectionError
from font_inspector.models import Inspection, QueueItem, QueueState
from font_inspector.observability import record_inspection, start_span
from font_inspector.operations import OperationTracker
from font_inspector.project_links import EntityNotFoundError, ProjectLinkService
from font_inspector.records import inspection_from_row

logger = logging.getLogger("fontinspector.queue")

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_PROCESSING},
    STATUS_PROCESSING: {STATUS_COMPLETED, STATUS_FAILED},
    STATUS_FAILED: {STATUS_PENDING},
    STATUS_COMPLETED: set(),
}

STATUS_LABELS = {
    STATUS_PROCESSING: "Processing",
    STATUS_PENDING: "Pending",
    STATUS_FAILED: "Failed",
    STATUS_COMPLETED: "Complete",
}

PROGRESS_STARTED = 10
PROGRESS_DONE = 100
ERROR_DISPLAY_LIMIT = 100
MAX_TRACKED_ITEMS = 200


class InvalidStatusTransition(ValueError):
    pass


def advance_status(current: str, target: str) -> str:
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(f"Cannot move inspection from {current!r} to {target!r}")
    return target


def truncate_error(error: str | None, limit: int = ERROR_DISPLAY_LIMIT) -> str | None:
    if error is None:
        return None
    if len(error) > limit:
        return f"{error[:limit]}..."
    return error


def _status_of(item: Any) -> str:
    if isinstance(item, dict):
        return str(item.get("status") or "")
    return str(getattr(item, "status", "") or "")


def queue_visible(items: Iterable[Any]) -> bool:
    """Hidden when empty or when every item has completed."""
    statuses = [_status_of(item) for item in items]
    if not statuses:
        return False
    return not all(status == STATUS_COMPLETED for status in statuses)


def queue_item_view(inspection: Inspection) -> QueueItem:
    return QueueItem(
        id=inspection.id,
        url=inspection.url,
        status=inspection.status,
        label=STATUS_LABELS.get(inspection.status, "Complete"),
        progress=inspection.progress,
        showProgress=inspection.status != STATUS_FAILED,
        error=inspection.error,
        errorTruncated=truncate_error(inspection.error),
        projectId=inspection.projectId,
    )


def build_queue_state(inspections: list[Inspection]) -> QueueState:
    visible = queue_visible(inspections)
    return QueueState(
        visible=visible,
        items=[queue_item_view(item) for item in inspections] if visible else [],
    )


def normalize_url(url: str) -> str:
    value = (url or "").strip()
    if value and not value.startswith(("http://", "https://")):
        value = f"https://{value}"
    return value


class InspectionQueue:
    """Runs submitted batches and remembers which inspections are in the queue."""

    def __init__(
        self,
        db: Any,
        inspector: FontInspector | None = None,
        *,
        operations: OperationTracker | None = None,
        max_urls: int = config.QUEUE_MAX_URLS,
    ):
        self.db = db
        self.inspector = inspector or FontInspector()
        self.operations = operations or OperationTracker()
        self.max_urls = max_urls
        self.inspections = get_inspection_repository(db)
        self.links = ProjectLinkService(db)
        self._queued_ids: list[str] = []

    def _track(self, inspection_ids: list[str]) -> None:
        for inspection_id in inspection_ids:
            if inspection_id not in self._queued_ids:
                self._queued_ids.append(inspection_id)
        if len(self._queued_ids) > MAX_TRACKED_ITEMS:
            self._queued_ids = self._queued_ids[-MAX_TRACKED_ITEMS:]

    async def start_operation(
        self,
        kind: str,
        project_id: str = "",
        trigger: str = "api",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return await self.operations.start(kind, project_id, trigger, metadata)

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        return await self.operations.recent(limit)

    async def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        return await self.operations.get(operation_id)

    async def get_observability_snapshot(self) -> dict[str, Any]:
        return await self.operations.snapshot()

    async def submit(
        self,
        urls: list[str],
        project_name: str | None = None,
        project_id: str | None = None,
        *,
        trigger: str = "api",
    ) -> dict[str, Any]:
        """Create pending inspections for ``urls`` and an operation to run them.

        The project (given by id, or created/reused by name) exists before any
        inspection is created, and each inspection is linked to it on creation.
        """
        cleaned: list[str] = []
        for url in urls or []:
            normalized = normalize_url(url)
            if normalized and normalized not in cleaned:
                cleaned.append(normalized)
        if not cleaned:
            raise ValueError("At least one URL is required")
        if len(cleaned) > self.max_urls:
            raise ValueError(f"Too many URLs: {len(cleaned)} (max {self.max_urls})")

        resolved_project_id = (project_id or "").strip() or None
        if resolved_project_id:
            project = await self.links.projects.get_by_id(resolved_project_id)
            if not project:
                raise EntityNotFoundError(f"Project {resolved_project_id} not found")
        elif (project_name or "").strip():
            project = await self.links.create_project(project_name.strip())
            resolved_project_id = str(project["id"])

        inspection_ids: list[str] = []
        for url in cleaned:
            row = await self.inspections.create({"url": url, "status": STATUS_PENDING, "progress": 0})
            inspection_id = str(row["id"])
            inspection_ids.append(inspection_id)
            if resolved_project_id:
                await self.links.link(resolved_project_id, inspection_id)
        self._track(inspection_ids)

        operation_id = await self.operations.start(
            "inspection_batch",
            resolved_project_id or "",
            trigger,
            {"urls": cleaned, "inspectionIds": inspection_ids},
        )
        await self.operations.update(
            operation_id,
            progress={"total": len(inspection_ids), "done": 0},
            counters={"completed": 0, "failed": 0},
        )
        logger.info("Queued %d inspection(s) under %s", len(inspection_ids), operation_id)
        return {
            "operationId": operation_id,
            "projectId": resolved_project_id,
            "inspectionIds": inspection_ids,
        }

    async def process_inspection(self, inspection_id: str) -> dict[str, Any]:
        """Run one pending inspection to completion or failure. Returns the stored row."""
        row = await self.inspections.get_by_id(inspection_id)
        if not row:
            raise ValueError(f"Inspection {inspection_id} not found")
        current = str(row.get("status") or STATUS_PENDING)
        await self.inspections.update_status(
            inspection_id, advance_status(current, STATUS_PROCESSING), progress=PROGRESS_STARTED
        )

        t0 = time.monotonic()
        with start_span("inspection.run", {"inspection_id": inspection_id, "url": row["url"]}):
            try:
                result = await asyncio.to_thread(self.inspector.inspect, row["url"])
            except InspectionError as exc:
                error = str(exc)
                logger.warning("Inspection %s of %s failed: %s", inspection_id, row["url"], error)
            except Exception as exc:
                error = str(exc) or exc.__class__.__name__
                logger.exception("Inspection %s of %s crashed", inspection_id, row["url"])
            else:
                error = None

        duration_ms = (time.monotonic() - t0) * 1000
        try:
            if error is None:
                advance_status(STATUS_PROCESSING, STATUS_COMPLETED)
                await self.inspections.save_result(inspection_id, result, progress=PROGRESS_DONE)
                record_inspection("completed", duration_ms)
            else:
                await self.inspections.update_status(
                    inspection_id, advance_status(STATUS_PROCESSING, STATUS_FAILED), error=error
                )
                record_inspection("failed", duration_ms)
        except Exception as exc:
            # A row left in processing could never be retried.
            error = f"Could not store inspection result: {exc}"
            logger.exception("Storing inspection %s failed", inspection_id)
            await self.inspections.update_status(inspection_id, STATUS_FAILED, error=error)
            record_inspection("failed", duration_ms)
        return await self.inspections.get_by_id(inspection_id) or row

    async def run(self, operation_id: str | None, inspection_ids: list[str]) -> dict[str, Any]:
        """Process inspections one at a time; a failure never stops the batch."""
        stats = {"total": len(inspection_ids), "completed": 0, "failed": 0, "skipped": 0}
        await self.operations.update(operation_id, phase="inspecting", message=f"Inspecting {len(inspection_ids)} page(s)")
        try:
            for index, inspection_id in enumerate(inspection_ids, start=1):
                try:
                    row = await self.process_inspection(inspection_id)
                except (ValueError, InvalidStatusTransition) as exc:
                    logger.warning("Skipping inspection %s: %s", inspection_id, exc)
                    stats["skipped"] += 1
                else:
                    if row.get("status") == STATUS_COMPLETED:
                        stats["completed"] += 1
                    else:
                        stats["failed"] += 1
                await self.operations.update(
                    operation_id,
                    progress={"done": index},
                    counters={"completed": stats["completed"], "failed": stats["failed"]},
                )
        except Exception as exc:
            await self.operations.finish(operation_id, status="failed", stats=stats, error=str(exc))
            raise
        await self.operations.finish(operation_id, status="completed", stats=stats)
        return stats

    async def prepare_retry(self, inspection_id: str, *, trigger: str = "api") -> str:
        """Move a failed inspection back to pending. Returns the retry operation id."""
        row = await self.inspections.get_by_id(inspection_id)
        if not row:
            raise ValueError(f"Inspection {inspection_id} not found")
        await self.inspections.update_status(
            inspection_id,
            advance_status(str(row.get("status") or ""), STATUS_PENDING),
            progress=0,
            error=None,
        )
        self._track([inspection_id])
        return await self.operations.start(
            "inspection_retry", row.get("project_id") or "", trigger, {"inspectionIds": [inspection_id]}
        )

    async def retry(self, inspection_id: str, *, trigger: str = "api") -> dict[str, Any]:
        operation_id = await self.prepare_retry(inspection_id, trigger=trigger)
        stats = await self.run(operation_id, [inspection_id])
        return {"operationId": operation_id, "stats": stats}

    async def queue_state(self) -> QueueState:
        rows = await self.inspections.list_by_ids(list(self._queued_ids))
        order = {inspection_id: index for index, inspection_id in enumerate(self._queued_ids)}
        rows.sort(key=lambda r: order.get(str(r["id"]), len(order)))
        return build_queue_state([inspection_from_row(r) for r in rows])
