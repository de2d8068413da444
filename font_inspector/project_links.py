"""Project <-> inspection link maintenance.

A project keeps the set of its inspection ids and every inspection keeps a
back-reference to its project. The two rows are written independently, with
no transaction around them: ``link``/``unlink`` can leave one side updated if
the second write fails, and concurrent calls on the same project may race.
``rebuild_links_from_inspections`` repairs project sets from the inspection
back-references, and ``audit_links`` reports drift in either direction.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any

from font_inspector.db.factory import get_inspection_repository, get_project_repository
from font_inspector.observability import record_link_operation, record_rebuild, start_span
from font_inspector.records import inspection_ids

logger = logging.getLogger("fontinspector.links")


class ProjectLinkError(ValueError):
    """Invalid link arguments."""


class EntityNotFoundError(ProjectLinkError):
    """The project or inspection does not exist."""


class PartialLinkError(ProjectLinkError):
    """One side of the link was written and the other could not be."""


@dataclass
class LinkFinding:
    kind: str
    project_id: str
    inspection_id: str
    detail: str


def _require_ids(project_id: str, inspection_id: str) -> tuple[str, str]:
    project_id = (project_id or "").strip()
    inspection_id = (inspection_id or "").strip()
    if not project_id:
        raise ProjectLinkError("projectId is required")
    if not inspection_id:
        raise ProjectLinkError("inspectionId is required")
    return project_id, inspection_id


def findings_as_dicts(findings: list[LinkFinding]) -> list[dict[str, Any]]:
    return [asdict(item) for item in findings]


class ProjectLinkService:
    def __init__(self, db: Any):
        self.db = db
        self.projects = get_project_repository(db)
        self.inspections = get_inspection_repository(db)

    async def link(self, project_id: str, inspection_id: str) -> dict[str, Any]:
        """Add ``inspection_id`` to the project's set and point the inspection at it.

        An inspection that already belongs to another project is moved: its id
        is pulled from the previous project's set after both writes succeed.
        """
        project_id, inspection_id = _require_ids(project_id, inspection_id)
        logger.info("Linking inspection %s to project %s", inspection_id, project_id)
        with start_span("links.link", {"project_id": project_id, "inspection_id": inspection_id}):
            try:
                project = await self.projects.get_by_id(project_id)
                if not project:
                    raise EntityNotFoundError(f"Project {project_id} not found")
                inspection = await self.inspections.get_by_id(inspection_id)
                if not inspection:
                    raise EntityNotFoundError(f"Inspection {inspection_id} not found")
                previous_project_id = inspection.get("project_id") or None

                if not await self.projects.add_inspection_id(project_id, inspection_id):
                    raise EntityNotFoundError(f"Project {project_id} not found")
                if not await self.inspections.set_project(inspection_id, project_id):
                    raise PartialLinkError(
                        f"Project {project_id} lists inspection {inspection_id} "
                        "but the inspection could not be updated"
                    )
                if previous_project_id and previous_project_id != project_id:
                    await self.projects.remove_inspection_id(previous_project_id, inspection_id)
            except Exception as exc:
                logger.error("Link %s -> %s failed: %s", inspection_id, project_id, exc)
                record_link_operation("link", "failed")
                raise

        record_link_operation("link", "ok")
        logger.info("Linked inspection %s to project %s", inspection_id, project_id)
        return {
            "projectId": project_id,
            "inspectionId": inspection_id,
            "previousProjectId": previous_project_id if previous_project_id != project_id else None,
        }

    async def unlink(self, project_id: str, inspection_id: str) -> dict[str, Any]:
        """Pull ``inspection_id`` from the project's set and clear its back-reference.

        The back-reference is only cleared while it still equals ``project_id``.
        A missing inspection is tolerated so dangling ids can be removed.
        """
        project_id, inspection_id = _require_ids(project_id, inspection_id)
        logger.info("Unlinking inspection %s from project %s", inspection_id, project_id)
        with start_span("links.unlink", {"project_id": project_id, "inspection_id": inspection_id}):
            try:
                if not await self.projects.remove_inspection_id(project_id, inspection_id):
                    raise EntityNotFoundError(f"Project {project_id} not found")
                cleared = await self.inspections.clear_project_if(inspection_id, project_id)
            except Exception as exc:
                logger.error("Unlink %s -> %s failed: %s", inspection_id, project_id, exc)
                record_link_operation("unlink", "failed")
                raise

        record_link_operation("unlink", "ok")
        logger.info("Unlinked inspection %s from project %s", inspection_id, project_id)
        return {
            "projectId": project_id,
            "inspectionId": inspection_id,
            "backReferenceCleared": bool(cleared),
        }

    async def rebuild_links_from_inspections(self, *, dry_run: bool = False) -> dict[str, Any]:
        """Overwrite every referenced project's inspection set from inspection back-references.

        Projects with no referencing inspection are left untouched. The reverse
        direction is not checked here; use ``audit_links`` for that.
        """
        t0 = time.monotonic()
        stats: dict[str, Any] = {
            "inspections_scanned": 0,
            "projects_updated": 0,
            "projects_missing": 0,
            "missing_project_ids": [],
            "dry_run": bool(dry_run),
            "duration_ms": 0,
        }
        logger.info("Rebuilding project inspection sets (dry_run=%s)", dry_run)
        with start_span("links.rebuild", {"dry_run": bool(dry_run)}):
            try:
                rows = await self.inspections.list_linked()
                stats["inspections_scanned"] = len(rows)

                grouped: dict[str, list[str]] = {}
                for row in rows:
                    grouped.setdefault(str(row["project_id"]), []).append(str(row["id"]))

                applied: dict[str, list[str]] = {}
                for project_id, ids in grouped.items():
                    project = await self.projects.get_by_id(project_id)
                    if not project:
                        logger.warning(
                            "Skipping missing project %s referenced by %d inspection(s)",
                            project_id,
                            len(ids),
                        )
                        stats["missing_project_ids"].append(project_id)
                        continue
                    applied[project_id] = ids
                    if dry_run:
                        continue
                    if await self.projects.replace_inspection_ids(project_id, ids):
                        stats["projects_updated"] += 1
            except Exception as exc:
                logger.error("Link rebuild failed: %s", exc)
                record_rebuild("failed", dry_run=dry_run)
                raise

        stats["projects_missing"] = len(stats["missing_project_ids"])
        if dry_run:
            stats["groups"] = applied
        stats["duration_ms"] = int((time.monotonic() - t0) * 1000)
        record_rebuild("ok", dry_run=dry_run)
        logger.info(
            "Link rebuild complete: scanned=%d updated=%d missing=%d in %dms",
            stats["inspections_scanned"],
            stats["projects_updated"],
            stats["projects_missing"],
            stats["duration_ms"],
        )
        return stats

    async def audit_links(self) -> dict[str, Any]:
        """Read-only consistency report covering both link directions."""
        findings: list[LinkFinding] = []
        projects = await self.projects.list_all()
        project_sets = {str(p["id"]): set(inspection_ids(p)) for p in projects}

        listed_ids = sorted({iid for ids in project_sets.values() for iid in ids})
        listed_rows = {str(r["id"]): r for r in await self.inspections.list_by_ids(listed_ids)}
        for project_id, ids in project_sets.items():
            for inspection_id in sorted(ids):
                row = listed_rows.get(inspection_id)
                if row is None:
                    findings.append(LinkFinding(
                        kind="missing_inspection",
                        project_id=project_id,
                        inspection_id=inspection_id,
                        detail="project lists an inspection that does not exist",
                    ))
                elif (row.get("project_id") or "") != project_id:
                    findings.append(LinkFinding(
                        kind="back_reference_mismatch",
                        project_id=project_id,
                        inspection_id=inspection_id,
                        detail=f"inspection points at {row.get('project_id') or 'no project'}",
                    ))

        linked = await self.inspections.list_linked()
        for row in linked:
            inspection_id = str(row["id"])
            project_id = str(row["project_id"])
            if project_id not in project_sets:
                findings.append(LinkFinding(
                    kind="missing_project",
                    project_id=project_id,
                    inspection_id=inspection_id,
                    detail="inspection references a project that does not exist",
                ))
            elif inspection_id not in project_sets[project_id]:
                findings.append(LinkFinding(
                    kind="unlisted_inspection",
                    project_id=project_id,
                    inspection_id=inspection_id,
                    detail="project does not list this inspection",
                ))

        return {
            "project_count": len(project_sets),
            "linked_inspection_count": len(linked),
            "finding_count": len(findings),
            "consistent": not findings,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "findings": findings_as_dicts(findings),
        }

    async def list_project_inspections(self, project_id: str) -> list[dict[str, Any]]:
        """Inspections belonging to a project.

        Falls back to the project's stored id set when no inspection carries a
        back-reference, and backfills the reference on inspections that have none.
        """
        rows = await self.inspections.list_by_project(project_id)
        if rows:
            return rows

        project = await self.projects.get_by_id(project_id)
        if not project:
            raise EntityNotFoundError(f"Project {project_id} not found")
        rows = await self.inspections.list_by_ids(inspection_ids(project))
        for row in rows:
            if row.get("project_id"):
                continue
            if await self.inspections.set_project(str(row["id"]), project_id):
                row["project_id"] = project_id
                logger.info("Backfilled project %s on inspection %s", project_id, row["id"])
        return rows

    async def create_project(
        self,
        name: str,
        description: str = "",
        inspection_ids_to_link: list[str] | None = None,
    ) -> dict[str, Any]:
        """Create a project, or return the existing one with the same name."""
        name = (name or "").strip()
        if not name:
            raise ProjectLinkError("Project name is required")
        project = await self.projects.get_by_name(name)
        if project:
            logger.info("Reusing existing project %s (%s)", project["id"], name)
        else:
            project = await self.projects.create({"name": name, "description": description or ""})
            logger.info("Created project %s (%s)", project["id"], name)
        for inspection_id in inspection_ids_to_link or []:
            await self.link(str(project["id"]), inspection_id)
        return await self.projects.get_by_id(str(project["id"])) or project

    async def delete_project(self, project_id: str) -> int:
        """Delete a project together with its inspections. Returns inspections removed."""
        project = await self.projects.get_by_id(project_id)
        if not project:
            raise EntityNotFoundError(f"Project {project_id} not found")
        removed = await self.inspections.delete_by_project(project_id)
        for inspection_id in inspection_ids(project):
            row = await self.inspections.get_by_id(inspection_id)
            if row and (row.get("project_id") or project_id) == project_id:
                if await self.inspections.delete(inspection_id):
                    removed += 1
        await self.projects.delete(project_id)
        logger.info("Deleted project %s and %d inspection(s)", project_id, removed)
        return removed

    async def delete_inspection(self, inspection_id: str) -> bool:
        """Unlink an inspection from its project, then delete it."""
        row = await self.inspections.get_by_id(inspection_id)
        if not row:
            raise EntityNotFoundError(f"Inspection {inspection_id} not found")
        project_id = row.get("project_id")
        if project_id and await self.projects.get_by_id(project_id):
            await self.unlink(project_id, inspection_id)
        return await self.inspections.delete(inspection_id)
