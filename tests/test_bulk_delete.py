import asyncio
import unittest
from fakes import FakeClient, complete_frames, make_candidate, progress_frame
from streammon_maint.deletion import (
    ERROR,
    PARTIAL,
    SUCCESS,
    BulkDeleteCoordinator,
    classify_delete,
    reconcile,
)
from streammon_maint.errors import ApiError, ValidationError
from streammon_maint.models import BulkDeleteResult, CandidatesPage, MaintenanceRule
from streammon_maint.service import CandidatesView


class TestClassifyDelete(unittest.TestCase):
    def test_success(self):
        result = classify_delete(5, 0, 0, requested=5, total_size=3 * 1024 ** 3)

        self.assertEqual(result.kind, SUCCESS)
        self.assertEqual(result.message, "Deleted 5 items (3.0 GB reclaimed)")

    def test_success_single_item_without_size(self):
        self.assertEqual(classify_delete(1, 0, 0, requested=1).message, "Deleted 1 item")

    def test_partial_with_failures(self):
        result = classify_delete(4, 1, 0, requested=5)

        self.assertEqual(result.kind, PARTIAL)
        self.assertEqual(result.message, "Deleted 4 of 5 items. 1 failed.")

    def test_partial_with_skips(self):
        result = classify_delete(3, 0, 2, requested=5)

        self.assertEqual(result.kind, PARTIAL)
        self.assertIn("2 skipped", result.message)
        self.assertNotIn("failed", result.message)

    def test_all_skipped_is_partial(self):
        result = classify_delete(0, 0, 4, requested=4)

        self.assertEqual(result.kind, PARTIAL)
        self.assertEqual(result.message, "All 4 items were skipped (excluded since page load)")

    def test_error(self):
        for failed, skipped in [(3, 0), (2, 1)]:
            with self.subTest(failed=failed, skipped=skipped):
                self.assertEqual(classify_delete(0, failed, skipped, requested=3).kind, ERROR)

    def test_retry_hint(self):
        self.assertTrue(classify_delete(1, 1, 0, requested=2, retry_hint=True).message.endswith("Please refresh and retry."))
        self.assertEqual(classify_delete(0, 2, 0, requested=2, retry_hint=True).message,
                         "Failed to delete items. Please refresh and retry.")


class TestReconcile(unittest.TestCase):
    def test_missing_counted_as_skipped(self):
        result = reconcile(BulkDeleteResult(deleted=2, failed=1), requested=5)
        self.assertEqual(result.skipped, 2)

    def test_full_accounting_untouched(self):
        result = BulkDeleteResult(deleted=3, skipped=2)
        self.assertIs(reconcile(result, requested=5), result)

    def test_over_accounting_stands(self):
        # cross-server copies make the server report more than was requested
        result = reconcile(BulkDeleteResult(deleted=7), requested=5)
        self.assertEqual((result.deleted, result.skipped), (7, 0))


class TestBulkDeleteCoordinator(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.client = FakeClient()
        self.progress = []
        self.results = []
        self.changed = []
        self.coordinator = BulkDeleteCoordinator(
            self.client,
            on_progress=self.progress.append,
            on_result=self.results.append,
            on_changed=lambda: self.changed.append(True),
        )

    async def test_progress_and_partial_result(self):
        self.client.stream_lines = [progress_frame(0, 5), progress_frame(5, 5, deleted=4, failed=1)]
        self.client.stream_lines += complete_frames(4, failed=1, errors=[("Movie 3", "permission denied")])

        result = await self.coordinator.run([1, 2, 3, 4, 5])

        self.assertEqual(result.kind, PARTIAL)
        self.assertEqual(result.message, "Deleted 4 of 5 items. 1 failed.")
        self.assertEqual(result.errors[0].title, "Movie 3")
        self.assertEqual(self.progress[0].title, "Starting...")
        self.assertEqual([p.current for p in self.progress[1:-1]], [0, 5])
        self.assertIsNone(self.progress[-1])
        self.assertIsNone(self.coordinator.progress)
        self.assertEqual(self.results, [result])
        self.assertEqual(self.changed, [True])
        self.assertTrue(self.client.stream_closed)

    async def test_duplicate_ids_sent_once(self):
        self.client.stream_lines = complete_frames(2)

        await self.coordinator.run([3, 4, 3])

        self.assertEqual(self.client.calls, [("bulk_delete", [3, 4])])

    async def test_empty_selection_rejected(self):
        with self.assertRaises(ValidationError):
            await self.coordinator.run([])
        self.assertEqual(self.client.calls, [])

    async def test_missing_terminal_frame_is_error(self):
        self.client.stream_lines = [progress_frame(1, 5, deleted=1)]

        result = await self.coordinator.run([1, 2, 3, 4, 5])

        self.assertEqual(result.kind, ERROR)
        self.assertEqual(self.changed, [])

    async def test_stream_request_failure_is_error(self):
        self.client.stream_error = ApiError(500, "streaming not supported")

        result = await self.coordinator.run([1])

        self.assertEqual(result.kind, ERROR)
        self.assertEqual(result.message, "Failed to delete items")
        self.assertEqual(self.changed, [])
        self.assertIsNone(self.progress[-1])

    async def test_unaccounted_candidates_reported_skipped(self):
        self.client.stream_lines = complete_frames(3)

        result = await self.coordinator.run([1, 2, 3, 4, 5])

        self.assertEqual(result.kind, PARTIAL)
        self.assertIn("2 skipped", result.message)
        self.assertEqual(self.changed, [True])

    async def test_all_failed_does_not_refetch(self):
        self.client.stream_lines = complete_frames(0, failed=2)

        result = await self.coordinator.run([1, 2])

        self.assertEqual(result.kind, ERROR)
        self.assertEqual(self.changed, [])

    async def test_cancel_mid_stream(self):
        gate = asyncio.Event()
        self.client.stream_lines = [progress_frame(0, 5), gate, progress_frame(5, 5, deleted=5)] + complete_frames(5)

        task = self.coordinator.start([1, 2, 3, 4, 5])
        while len(self.progress) < 2:
            await asyncio.sleep(0)
        self.coordinator.cancel()

        # the server never sends another line; cancelling alone must end the run
        self.assertIsNone(await asyncio.wait_for(task, timeout=2))
        self.assertFalse(gate.is_set())
        self.assertEqual(len(self.progress), 2)
        self.assertEqual(self.results, [])
        self.assertEqual(self.changed, [])
        self.assertTrue(self.client.response.closed)
        self.assertTrue(self.client.stream_closed)
        self.assertFalse(self.coordinator.active)

    async def test_new_run_cancels_previous(self):
        gate = asyncio.Event()
        self.client.stream_lines = [progress_frame(0, 2), gate] + complete_frames(2)
        first = self.coordinator.start([1, 2])
        while len(self.progress) < 2:
            await asyncio.sleep(0)
        first_response = self.client.response

        self.client.stream_lines = complete_frames(1)
        second = self.coordinator.start([9])
        result = await asyncio.wait_for(second, timeout=2)

        self.assertIsNone(await asyncio.wait_for(first, timeout=2))
        self.assertTrue(first_response.closed)
        self.assertTrue(first_response.exited)
        self.assertIsNot(first_response, self.client.response)
        self.assertEqual(self.results, [result])
        self.assertEqual(result.message, "Deleted 1 item (0 B reclaimed)")


class TestCandidatesViewBulkDelete(unittest.IsolatedAsyncioTestCase):
    async def test_partial_delete_clears_selection_and_refetches(self):
        client = FakeClient()
        candidates = [make_candidate(i) for i in range(1, 6)]
        client.page = CandidatesPage(items=candidates, total=5)
        view = CandidatesView(client, MaintenanceRule(id=1, name="Unwatched", criterion_type="unwatched_movie"))
        await view.refresh()
        view.selection.toggle_all(view.items)
        self.assertEqual(len(view.selection), 5)

        client.stream_lines = [progress_frame(0, 5), progress_frame(5, 5, deleted=4, failed=1)]
        client.stream_lines += complete_frames(4, failed=1, errors=[("Movie 2", "file locked")])
        result = await view.delete_selected()

        self.assertEqual(result.kind, PARTIAL)
        self.assertIn("4", result.message)
        self.assertIn("1 failed", result.message)
        self.assertIs(view.result, result)
        self.assertEqual(len(view.selection), 0)
        self.assertEqual(client.count("list_candidates"), 2)
        self.assertFalse(view.operating)
        self.assertIsNone(view.progress)

    async def test_close_aborts_paused_stream(self):
        client = FakeClient()
        results = []
        view = CandidatesView(client, MaintenanceRule(id=1, name="r", criterion_type="c"), on_result=results.append)
        gate = asyncio.Event()
        client.stream_lines = [progress_frame(0, 1), gate] + complete_frames(1)

        task = asyncio.create_task(view.delete_candidates([make_candidate(1)]))
        while client.response is None or client.response.lines_read < 1:
            await asyncio.sleep(0)
        view.close()

        self.assertIsNone(await asyncio.wait_for(task, timeout=2))
        self.assertFalse(gate.is_set())
        self.assertTrue(client.response.closed)
        self.assertTrue(client.response.exited)
        self.assertEqual(results, [])
        self.assertEqual(client.count("list_candidates"), 0)

    async def test_second_delete_replaces_paused_one(self):
        client = FakeClient()
        results = []
        view = CandidatesView(client, MaintenanceRule(id=1, name="r", criterion_type="c"), on_result=results.append)
        gate = asyncio.Event()
        client.stream_lines = [progress_frame(0, 2), gate] + complete_frames(2)

        first = asyncio.create_task(view.delete_candidates([make_candidate(1), make_candidate(2)]))
        while client.response is None or client.response.lines_read < 1:
            await asyncio.sleep(0)
        first_response = client.response

        second_gate = asyncio.Event()
        client.stream_lines = [second_gate] + complete_frames(1)
        second = asyncio.create_task(view.delete_candidates([make_candidate(3)]))

        self.assertIsNone(await asyncio.wait_for(first, timeout=2))
        self.assertTrue(first_response.closed)
        self.assertTrue(first_response.exited)
        self.assertTrue(view.operating)

        second_gate.set()
        result = await asyncio.wait_for(second, timeout=2)

        self.assertFalse(gate.is_set())
        self.assertEqual(results, [result])
        self.assertEqual(result.message, "Deleted 1 item (0 B reclaimed)")
        self.assertFalse(view.operating)


if __name__ == '__main__':
    unittest.main()
