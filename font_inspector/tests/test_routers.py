import types
import unittest
from unittest.mock import AsyncMock, patch

import aiosqlite
from fastapi import BackgroundTasks, HTTPException

from font_inspector.db import connection
from font_inspector.db.sqlite_migrations import run_migrations
from font_inspector.inspection_queue import InspectionQueue
from font_inspector.models import (
    DiscoverRequest,
    InspectRequest,
    ProjectCreate,
    ProjectUpdate,
    RebuildLinksRequest,
)
from font_inspector.routers import inspections as inspections_router
from font_inspector.routers import links as links_router
from font_inspector.routers import projects as projects_router


class _FakeInspector:
    def inspect(self, url: str) -> dict:
        return {
            "downloadedFonts": [{
                "name": "brand.woff2",
                "format": "woff2",
                "size": 1024,
                "url": f"{url}/brand.woff2",
                "source": "self-hosted",
            }],
            "fontFaceDeclarations": [{"family": "Brand", "source": "url(/brand.woff2)"}],
            "activeFonts": [],
        }


class _RouterTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.queue = InspectionQueue(self.db, _FakeInspector())
        self.request = types.SimpleNamespace(
            app=types.SimpleNamespace(state=types.SimpleNamespace(inspection_queue=self.queue))
        )
        patcher = patch.object(connection, "get_connection", AsyncMock(return_value=self.db))
        patcher.start()
        self.addCleanup(patcher.stop)

    async def asyncTearDown(self) -> None:
        await self.db.close()


class ProjectsRouterTests(_RouterTestCase):
    async def test_create_list_and_update_project(self) -> None:
        created = await projects_router.create_project(ProjectCreate(name="Acme", description="Client"))
        again = await projects_router.create_project(ProjectCreate(name="Acme"))
        self.assertEqual(created.id, again.id)

        page = await projects_router.list_projects(offset=0, limit=50)
        self.assertEqual(page.total, 1)

        updated = await projects_router.update_project(created.id, ProjectUpdate(name="Acme Corp"))
        self.assertEqual(updated.name, "Acme Corp")
        with self.assertRaises(HTTPException) as ctx:
            await projects_router.update_project(created.id, ProjectUpdate(name="  "))
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_link_and_unlink_endpoints(self) -> None:
        project = await projects_router.create_project(ProjectCreate(name="Acme"))
        await self.queue.inspections.create({"id": "I-1", "url": "https://a.test"})

        linked = await projects_router.link_inspection(project.id, "I-1")
        self.assertEqual(linked["status"], "ok")
        detail = await projects_router.get_project(project.id)
        self.assertEqual(detail.inspectionIds, ["I-1"])
        self.assertEqual([i.id for i in detail.inspections], ["I-1"])
        self.assertEqual(detail.statusCounts, {"pending": 1})

        unlinked = await projects_router.unlink_inspection(project.id, "I-1")
        self.assertTrue(unlinked["backReferenceCleared"])

    async def test_link_missing_inspection_is_404(self) -> None:
        project = await projects_router.create_project(ProjectCreate(name="Acme"))

        with self.assertRaises(HTTPException) as ctx:
            await projects_router.link_inspection(project.id, "I-missing")

        self.assertEqual(ctx.exception.status_code, 404)

    async def test_delete_project_cascades(self) -> None:
        submitted = await self.queue.submit(["https://a.test", "https://b.test"], project_name="Acme")

        payload = await projects_router.delete_project(submitted["projectId"])

        self.assertEqual(payload["deletedInspections"], 2)
        self.assertEqual(await self.queue.inspections.count(), 0)
        with self.assertRaises(HTTPException) as ctx:
            await projects_router.get_project(submitted["projectId"])
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_project_csv_export(self) -> None:
        submitted = await self.queue.submit(["https://a.test"], project_name="Acme Co")
        await self.queue.run(submitted["operationId"], submitted["inspectionIds"])

        response = await projects_router.export_project_csv(submitted["projectId"])

        body = response.body.decode("utf-8")
        self.assertTrue(body.startswith("Website URL,Font Family"))
        self.assertIn('"https://a.test","Brand","brand.woff2"', body)
        self.assertIn('filename="project-Acme-Co.csv"', response.headers["content-disposition"])


class InspectionsRouterTests(_RouterTestCase):
    async def test_inspect_background_schedules_run(self) -> None:
        background = BackgroundTasks()

        payload = await inspections_router.inspect(
            self.request,
            background,
            InspectRequest(urls=["a.test"], projectName="Acme"),
        )

        self.assertEqual(payload["mode"], "background")
        self.assertEqual(len(background.tasks), 1)
        state = await inspections_router.get_queue(self.request)
        self.assertTrue(state.visible)
        self.assertEqual(state.items[0].label, "Pending")

    async def test_inspect_foreground_returns_results(self) -> None:
        payload = await inspections_router.inspect(
            self.request,
            BackgroundTasks(),
            InspectRequest(urls=["https://a.test"], background=False),
        )

        self.assertEqual(payload["stats"]["completed"], 1)
        self.assertEqual(payload["inspections"][0]["status"], "completed")
        self.assertEqual(payload["inspections"][0]["downloadedFonts"][0]["name"], "brand.woff2")
        state = await inspections_router.get_queue(self.request)
        self.assertFalse(state.visible)

    async def test_inspect_unknown_project_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await inspections_router.inspect(
                self.request,
                BackgroundTasks(),
                InspectRequest(urls=["https://a.test"], projectId="P-missing"),
            )
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_retry_completed_inspection_is_409(self) -> None:
        await self.queue.inspections.create({"id": "I-1", "url": "https://a.test", "status": "completed"})

        with self.assertRaises(HTTPException) as ctx:
            await inspections_router.retry_inspection(self.request, BackgroundTasks(), "I-1", background=False)
        self.assertEqual(ctx.exception.status_code, 409)

        with self.assertRaises(HTTPException) as ctx:
            await inspections_router.retry_inspection(self.request, BackgroundTasks(), "I-missing", background=False)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_retry_failed_in_background(self) -> None:
        await self.queue.inspections.create({"id": "I-1", "url": "https://a.test", "status": "failed", "error": "boom"})
        background = BackgroundTasks()

        payload = await inspections_router.retry_inspection(self.request, background, "I-1", background=True)

        self.assertEqual(payload["mode"], "background")
        self.assertEqual(len(background.tasks), 1)
        row = await self.queue.inspections.get_by_id("I-1")
        self.assertEqual(row["status"], "pending")
        self.assertIsNone(row["error"])

    async def test_delete_inspection_unlinks_project(self) -> None:
        submitted = await self.queue.submit(["https://a.test"], project_name="Acme")
        inspection_id = submitted["inspectionIds"][0]

        await inspections_router.delete_inspection(inspection_id)

        project = await projects_router.get_project(submitted["projectId"])
        self.assertEqual(project.inspectionIds, [])
        with self.assertRaises(HTTPException) as ctx:
            await inspections_router.get_inspection(inspection_id)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_queue_missing_is_503(self) -> None:
        request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))
        with self.assertRaises(HTTPException) as ctx:
            await inspections_router.get_queue(request)
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_discover_pages_runs_discovery(self) -> None:
        pages = [{"url": "https://a.test", "title": None, "priority": 100, "source": "original"}]
        with patch.object(inspections_router, "discover_pages", return_value=pages) as discover:
            payload = await inspections_router.discover(DiscoverRequest(url="a.test", maxPages=5))

        discover.assert_called_once_with("a.test", 5)
        self.assertEqual(payload["count"], 1)

    async def test_operations_listing(self) -> None:
        submitted = await self.queue.submit(["https://a.test"])

        listing = await inspections_router.list_queue_operations(self.request, limit=20)
        operation = await inspections_router.get_queue_operation(self.request, submitted["operationId"])

        self.assertEqual(listing["count"], 1)
        self.assertEqual(operation["kind"], "inspection_batch")
        with self.assertRaises(HTTPException):
            await inspections_router.get_queue_operation(self.request, "OP-missing")


class LinksRouterTests(_RouterTestCase):
    async def test_rebuild_foreground_returns_stats(self) -> None:
        project = await self.queue.links.create_project("Acme")
        await self.queue.inspections.create({"id": "I-1", "url": "https://a.test", "projectId": project["id"]})

        payload = await links_router.rebuild_links(
            self.request,
            BackgroundTasks(),
            RebuildLinksRequest(background=False),
        )

        self.assertEqual(payload["mode"], "foreground")
        self.assertEqual(payload["stats"]["projects_updated"], 1)
        self.assertEqual(payload["operation"]["status"], "completed")

    async def test_rebuild_background_tracks_operation(self) -> None:
        background = BackgroundTasks()

        payload = await links_router.rebuild_links(
            self.request,
            background,
            RebuildLinksRequest(background=True, dryRun=True),
        )

        self.assertEqual(len(background.tasks), 1)
        operation = await self.queue.get_operation(payload["operationId"])
        self.assertEqual(operation["metadata"], {"dryRun": True})

    async def test_rebuild_without_queue_is_503(self) -> None:
        request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))

        with self.assertRaises(HTTPException) as ctx:
            await links_router.rebuild_links(request, BackgroundTasks(), RebuildLinksRequest())

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertIs(links_router._get_inspection_queue, inspections_router._get_inspection_queue)

    async def test_audit_endpoint(self) -> None:
        project = await self.queue.links.create_project("Acme")
        await self.queue.links.projects.add_inspection_id(project["id"], "I-gone")

        report = await links_router.audit_links()

        self.assertEqual(report["finding_count"], 1)
        self.assertEqual(report["findings"][0]["kind"], "missing_inspection")


if __name__ == "__main__":
    unittest.main()
