import unittest
from fakes import FakeClient
from streammon_maint.errors import ApiError, SyncStartError, ValidationError
from streammon_maint.launcher import SyncLauncher
from streammon_maint.models import RuleLibrary


def libs(*pairs):
    return [RuleLibrary(server_id=s, library_id=l) for s, l in pairs]


class TestSyncLauncher(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.client = FakeClient()
        self.launcher = SyncLauncher(self.client)

    async def test_conflict_is_joined(self):
        self.client.sync_errors["1-10"] = ApiError(409, "sync already in progress")

        keys = await self.launcher.launch(libs((1, "10"), (2, "20")))

        self.assertEqual(keys, ["1-10", "2-20"])

    async def test_duplicates_start_once(self):
        keys = await self.launcher.launch(libs((1, "10"), (1, "10"), (2, "20"), (1, "10")))

        self.assertEqual(keys, ["1-10", "2-20"])
        self.assertEqual(self.client.count("start_sync"), 2)

    async def test_other_failures_excluded(self):
        self.client.sync_errors["2-20"] = ApiError(500, "poller not configured")

        keys = await self.launcher.launch(libs((1, "10"), (2, "20")))

        self.assertEqual(keys, ["1-10"])

    async def test_all_failed(self):
        self.client.sync_errors["1-10"] = ApiError(500)
        self.client.sync_errors["2-20"] = ConnectionError("refused")

        with self.assertRaises(SyncStartError):
            await self.launcher.launch(libs((1, "10"), (2, "20")))

    async def test_no_libraries(self):
        with self.assertRaises(ValidationError):
            await self.launcher.launch([])
        self.assertEqual(self.client.calls, [])


if __name__ == '__main__':
    unittest.main()
