import asyncio
import logging
from typing import Any, Callable, List, Optional
from .config import settings
from .engine import SyncStatusEngine, TickOutcome
from .lifecycle import CancelToken, dispatch
from .state import OperationTable

logger = logging.getLogger(__name__)


class SyncStatusPoller:
    """
    One shared polling task for every tracked rule. The task only exists while
    the operation table is non-empty and exits on its own once it drains.
    """

    def __init__(self, client, table: OperationTable, engine: Optional[SyncStatusEngine] = None,
                 interval: Optional[float] = None,
                 on_update: Optional[Callable[[int, str], Any]] = None,
                 on_complete: Optional[Callable[[int], Any]] = None,
                 on_error: Optional[Callable[[int, str], Any]] = None):
        self.client = client
        self.table = table
        self.engine = engine or SyncStatusEngine()
        self.interval = settings.SYNC_POLL_INTERVAL_SECONDS if interval is None else interval
        self.on_update = on_update
        self.on_complete = on_complete
        self.on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self._token = CancelToken()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def track(self, rule_id: int, sync_keys: List[str], library_count: int = 0):
        self.table.track(rule_id, sync_keys, library_count)
        if not self.running:
            self._token = CancelToken()
            self._task = asyncio.create_task(self._loop(self._token))

    async def poll_once(self, token: Optional[CancelToken] = None) -> Optional[TickOutcome]:
        token = token or self._token
        status = await self.client.get_sync_status()
        if token.cancelled:
            return None

        outcome = self.engine.apply(self.table.snapshot(), status)
        self.table.replace(outcome.ops)

        calls = [(self.on_update, rule_id, op.message) for rule_id, op in outcome.ops.items()]
        calls += [(self.on_error, rule_id, message) for rule_id, message in outcome.errors.items()]
        calls += [(self.on_complete, rule_id) for rule_id in outcome.completed]
        for handler, *args in calls:
            if token.cancelled:
                break
            await dispatch(handler, *args)
        return outcome

    async def _loop(self, token: CancelToken):
        loop = asyncio.get_running_loop()
        logger.debug("Sync status polling started")
        while len(self.table) and not token.cancelled:
            start_time = loop.time()
            try:
                await self.poll_once(token)
            except Exception as e:
                logger.warning(f"Sync status poll failed: {e}")

            if not len(self.table):
                break
            elapsed = loop.time() - start_time
            await asyncio.sleep(max(0, self.interval - elapsed))
        logger.debug("Sync status polling stopped")

    async def stop(self):
        self._token.cancel()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def wait(self):
        """Blocks until the tracked operations have drained and polling has stopped."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)
