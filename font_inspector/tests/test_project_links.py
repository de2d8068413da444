import asyncio
import unittest
from unittest.mock import AsyncMock, patch

import aiosqlite

from font_inspector.db.sqlite_migrations import run_migrations
from font_inspector.project_links import (
    EntityNotFoundError,
    PartialLinkError,
    ProjectLinkError,
    ProjectLinkService,
)
from font_inspector.records import inspection_ids


class ProjectLinkServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.service = ProjectLinkService(self.db)
        await self.service.projects.create({"id": "P-1", "name": "Acme"})
        await self.service.projects.create({"id": "P-2", "name": "Globex"})
        for idx in range(1, 4):
            await self.service.inspections.create({"id": f"I-{idx}", "url": f"https://site{idx}.test"})

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _ids(self, project_id: str) -> list[str]:
        return inspection_ids(await self.service.projects.get_by_id(project_id))

    async def _back_ref(self, inspection_id: str):
        return (await self.service.inspections.get_by_id(inspection_id))["project_id"]

    async def test_link_writes_both_sides_once(self) -> None:
        await self.service.link("P-1", "I-1")
        result = await self.service.link("P-1", "I-1")

        self.assertEqual(await self._ids("P-1"), ["I-1"])
        self.assertEqual(await self._back_ref("I-1"), "P-1")
        self.assertIsNone(result["previousProjectId"])

    async def test_link_moves_inspection_between_projects(self) -> None:
        await self.service.link("P-1", "I-1")
        result = await self.service.link("P-2", "I-1")

        self.assertEqual(result["previousProjectId"], "P-1")
        self.assertEqual(await self._ids("P-1"), [])
        self.assertEqual(await self._ids("P-2"), ["I-1"])
        self.assertEqual(await self._back_ref("I-1"), "P-2")

    async def test_link_missing_entities_raise(self) -> None:
        with self.assertRaises(EntityNotFoundError):
            await self.service.link("P-missing", "I-1")
        with self.assertRaises(EntityNotFoundError):
            await self.service.link("P-1", "I-missing")
        with self.assertRaises(ProjectLinkError):
            await self.service.link("", "I-1")

        self.assertEqual(await self._ids("P-1"), [])
        self.assertIsNone(await self._back_ref("I-1"))

    async def test_failed_back_reference_leaves_set_entry(self) -> None:
        with patch.object(self.service.inspections, "set_project", AsyncMock(return_value=False)):
            with self.assertRaises(PartialLinkError):
                await self.service.link("P-1", "I-1")

        self.assertEqual(await self._ids("P-1"), ["I-1"])
        self.assertIsNone(await self._back_ref("I-1"))
        report = await self.service.audit_links()
        self.assertEqual(
            [(f["kind"], f["inspection_id"]) for f in report["findings"]],
            [("back_reference_mismatch", "I-1")],
        )

    async def test_concurrent_links_store_each_id_once(self) -> None:
        await asyncio.gather(*(self.service.link("P-1", "I-1") for _ in range(5)))
        await asyncio.gather(*(self.service.link("P-1", f"I-{idx}") for idx in (2, 3, 2, 3)))

        self.assertEqual(sorted(await self._ids("P-1")), ["I-1", "I-2", "I-3"])
        for idx in range(1, 4):
            self.assertEqual(await self._back_ref(f"I-{idx}"), "P-1")

    async def test_unlink_clears_set_and_back_reference(self) -> None:
        await self.service.link("P-1", "I-1")
        await self.service.link("P-1", "I-2")

        result = await self.service.unlink("P-1", "I-1")

        self.assertTrue(result["backReferenceCleared"])
        self.assertEqual(await self._ids("P-1"), ["I-2"])
        self.assertIsNone(await self._back_ref("I-1"))
        self.assertEqual(await self._back_ref("I-2"), "P-1")

    async def test_unlink_keeps_reference_owned_by_another_project(self) -> None:
        await self.service.link("P-2", "I-1")
        await self.service.projects.add_inspection_id("P-1", "I-1")

        result = await self.service.unlink("P-1", "I-1")

        self.assertFalse(result["backReferenceCleared"])
        self.assertEqual(await self._back_ref("I-1"), "P-2")

    async def test_unlink_tolerates_missing_inspection(self) -> None:
        await self.service.projects.add_inspection_id("P-1", "I-gone")

        result = await self.service.unlink("P-1", "I-gone")

        self.assertFalse(result["backReferenceCleared"])
        self.assertEqual(await self._ids("P-1"), [])

    async def test_unlink_missing_project_raises(self) -> None:
        with self.assertRaises(EntityNotFoundError):
            await self.service.unlink("P-missing", "I-1")

    async def test_rebuild_restores_sets_from_back_references(self) -> None:
        await self.service.inspections.set_project("I-1", "P-1")
        await self.service.inspections.set_project("I-2", "P-1")
        await self.service.inspections.set_project("I-3", "P-ghost")
        await self.service.projects.replace_inspection_ids("P-1", ["I-stale"])

        stats = await self.service.rebuild_links_from_inspections()

        self.assertEqual(stats["inspections_scanned"], 3)
        self.assertEqual(stats["projects_updated"], 1)
        self.assertEqual(stats["missing_project_ids"], ["P-ghost"])
        self.assertEqual(sorted(await self._ids("P-1")), ["I-1", "I-2"])

        again = await self.service.rebuild_links_from_inspections()
        self.assertEqual(again["projects_updated"], 1)
        self.assertEqual(sorted(await self._ids("P-1")), ["I-1", "I-2"])

    async def test_rebuild_dry_run_writes_nothing(self) -> None:
        await self.service.inspections.set_project("I-1", "P-1")

        stats = await self.service.rebuild_links_from_inspections(dry_run=True)

        self.assertTrue(stats["dry_run"])
        self.assertEqual(stats["projects_updated"], 0)
        self.assertEqual(stats["groups"], {"P-1": ["I-1"]})
        self.assertEqual(await self._ids("P-1"), [])

    async def test_rebuild_leaves_unreferenced_projects_alone(self) -> None:
        await self.service.projects.replace_inspection_ids("P-2", ["I-3"])

        await self.service.rebuild_links_from_inspections()

        self.assertEqual(await self._ids("P-2"), ["I-3"])

    async def test_audit_reports_drift_in_both_directions(self) -> None:
        await self.service.link("P-1", "I-1")
        await self.service.projects.add_inspection_id("P-1", "I-gone")
        await self.service.projects.add_inspection_id("P-1", "I-2")
        await self.service.inspections.set_project("I-3", "P-2")

        report = await self.service.audit_links()

        kinds = sorted(f["kind"] for f in report["findings"])
        self.assertEqual(kinds, ["back_reference_mismatch", "missing_inspection", "unlisted_inspection"])
        self.assertFalse(report["consistent"])
        self.assertEqual(report["project_count"], 2)

    async def test_audit_consistent_after_links(self) -> None:
        await self.service.link("P-1", "I-1")
        await self.service.link("P-2", "I-2")

        report = await self.service.audit_links()

        self.assertTrue(report["consistent"])
        self.assertEqual(report["linked_inspection_count"], 2)

    async def test_list_project_inspections_falls_back_to_stored_set(self) -> None:
        await self.service.projects.replace_inspection_ids("P-1", ["I-1", "I-2"])

        rows = await self.service.list_project_inspections("P-1")

        self.assertEqual(sorted(r["id"] for r in rows), ["I-1", "I-2"])
        self.assertEqual(await self._back_ref("I-1"), "P-1")
        self.assertEqual(await self._back_ref("I-2"), "P-1")

    async def test_list_project_inspections_missing_project_raises(self) -> None:
        with self.assertRaises(EntityNotFoundError):
            await self.service.list_project_inspections("P-missing")

    async def test_create_project_reuses_name_and_links(self) -> None:
        project = await self.service.create_project("Acme", inspection_ids_to_link=["I-3"])

        self.assertEqual(project["id"], "P-1")
        self.assertEqual(inspection_ids(project), ["I-3"])
        with self.assertRaises(ProjectLinkError):
            await self.service.create_project("   ")

    async def test_delete_project_removes_its_inspections(self) -> None:
        await self.service.link("P-1", "I-1")
        await self.service.link("P-1", "I-2")

        removed = await self.service.delete_project("P-1")

        self.assertEqual(removed, 2)
        self.assertIsNone(await self.service.projects.get_by_id("P-1"))
        self.assertIsNotNone(await self.service.inspections.get_by_id("I-3"))

    async def test_delete_inspection_unlinks_first(self) -> None:
        await self.service.link("P-1", "I-1")

        self.assertTrue(await self.service.delete_inspection("I-1"))
        self.assertEqual(await self._ids("P-1"), [])
        with self.assertRaises(EntityNotFoundError):
            await self.service.delete_inspection("I-1")


if __name__ == "__main__":
    unittest.main()
