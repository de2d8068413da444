import unittest

from font_inspector.operations import OperationTracker


class OperationTrackerTests(unittest.IsolatedAsyncioTestCase):
    async def test_lifecycle_and_snapshot(self) -> None:
        tracker = OperationTracker()
        op_id = await tracker.start("inspection_batch", "P-1", "api", {"urls": ["https://a.test"]})

        await tracker.update(op_id, phase="inspecting", progress={"total": 1}, counters={"completed": 0})
        snapshot = await tracker.snapshot()
        self.assertEqual(snapshot["activeOperationCount"], 1)
        self.assertEqual(snapshot["activeOperations"][0]["phase"], "inspecting")

        await tracker.finish(op_id, status="completed", stats={"completed": 1})
        op = await tracker.get(op_id)
        self.assertTrue(op_id.startswith("OP-"))
        self.assertEqual(op["status"], "completed")
        self.assertEqual(op["stats"], {"completed": 1})
        self.assertEqual(op["progress"], {"total": 1})
        self.assertNotEqual(op["finishedAt"], "")
        self.assertEqual((await tracker.snapshot())["activeOperationCount"], 0)

    async def test_history_is_bounded_and_newest_first(self) -> None:
        tracker = OperationTracker(max_history=3)
        ids = [await tracker.start("link_rebuild") for _ in range(5)]

        recent = await tracker.recent(limit=10)

        self.assertEqual([op["id"] for op in recent], list(reversed(ids[-3:])))
        self.assertIsNone(await tracker.get(ids[0]))

    async def test_returned_operations_are_copies(self) -> None:
        tracker = OperationTracker()
        op_id = await tracker.start("link_rebuild")

        op = await tracker.get(op_id)
        op["status"] = "tampered"

        self.assertEqual((await tracker.get(op_id))["status"], "running")

    async def test_unknown_ids_are_ignored(self) -> None:
        tracker = OperationTracker()
        await tracker.update("OP-missing", phase="x")
        await tracker.finish(None, status="completed")
        self.assertEqual(await tracker.recent(), [])


if __name__ == "__main__":
    unittest.main()
