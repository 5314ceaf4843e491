import logging
from typing import Any, Callable, Iterable, List, Optional
import uvicorn

from .config import settings
from .clients.streammon_client import StreamMonClient
from .deletion import BulkDeleteCoordinator, CrossServerDeleteSequencer, ERROR, SUCCESS
from .engine import SyncStatusEngine
from .formatting import plural
from .errors import SyncStartError, ValidationError
from .launcher import SyncLauncher
from .lifecycle import CancelToken, dispatch
from .lookup import LibraryLookup
from .models import (
    Candidate,
    CandidatesPage,
    DeleteProgress,
    ExclusionsPage,
    MaintenanceRule,
    OperationResult,
)
from .poller import SyncStatusPoller
from .selection import CandidateQuery, CandidateSelection, Selection
from .state import OperationTable
from . import server

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class CandidatesView:
    """
    State behind one rule's candidate table: the visible page, the selection
    scoped to it, and both deletion paths. close() tears everything down.
    """

    def __init__(self, client, rule: MaintenanceRule,
                 server_id: Optional[int] = None, library_id: Optional[str] = None,
                 on_result: Optional[Callable[[OperationResult], Any]] = None,
                 on_progress: Optional[Callable[[Optional[DeleteProgress]], None]] = None):
        self.client = client
        self.rule = rule
        self.query = CandidateQuery(rule_id=rule.id, server_id=server_id, library_id=library_id)
        self.selection = CandidateSelection()
        self.selection.set_scope(self.query)
        self.page: Optional[CandidatesPage] = None
        self.result: Optional[OperationResult] = None
        self.operating = False
        self.on_result = on_result
        self._token = CancelToken()
        self.coordinator = BulkDeleteCoordinator(
            client,
            on_progress=on_progress,
            on_result=self._set_result,
            on_changed=self._after_change,
        )
        self.sequencer = CrossServerDeleteSequencer(client)

    @property
    def items(self) -> List[Candidate]:
        return self.page.items if self.page else []

    @property
    def total_pages(self) -> int:
        return self.query.total_pages(self.page.total) if self.page else 0

    @property
    def progress(self) -> Optional[DeleteProgress]:
        return self.coordinator.progress

    async def _set_result(self, result: OperationResult):
        if self._token.cancelled:
            return
        self.result = result
        await dispatch(self.on_result, result)

    async def _after_change(self):
        if self._token.cancelled:
            return
        self.selection.clear()
        try:
            await self.refresh()
        except Exception as e:
            logger.warning(f"Failed to refresh candidates for rule {self.rule.id}: {e}")

    async def refresh(self) -> Optional[CandidatesPage]:
        page = await self.client.list_candidates(self.rule.id, self.query.to_params())
        if self._token.cancelled:
            return None
        clamped = self.query.clamp_page(page.total)
        if clamped != self.query:
            await self._set_query(clamped, fetch=False)
            return await self.refresh()
        self.page = page
        return page

    async def _set_query(self, query: CandidateQuery, fetch: bool = True):
        self.query = query
        self.selection.set_scope(query)
        if fetch:
            await self.refresh()

    async def set_rule(self, rule: MaintenanceRule):
        self.rule = rule
        await self._set_query(self.query.with_rule(rule.id))

    async def set_page(self, page: int):
        await self._set_query(self.query.with_page(page))

    async def set_per_page(self, per_page: int):
        await self._set_query(self.query.with_per_page(per_page))

    async def set_search(self, search: str):
        await self._set_query(self.query.with_search(search))

    async def sort_by(self, field: str):
        await self._set_query(self.query.with_sort(field))

    # --- Deletion ---

    async def delete_selected(self) -> Optional[OperationResult]:
        return await self.delete_candidates(self.selection.selected_items(self.items))

    async def delete_candidates(self, candidates: Iterable[Candidate]) -> Optional[OperationResult]:
        ids = [c.id for c in candidates]
        if not ids:
            raise ValidationError("No candidates selected")
        self.result = None
        self.operating = True
        task = self.coordinator.start(ids)
        try:
            return await task
        finally:
            # a superseding run owns the flag now
            if not self._token.cancelled and self.coordinator.task is task:
                self.operating = False

    async def delete_single(self, candidate: Candidate,
                            match_ids: Optional[Iterable[int]] = None) -> Optional[OperationResult]:
        """
        Items with external ids may exist on other servers too; those go through
        the cross-server path. Without explicit match_ids every match is deleted.
        """
        if not (candidate.item and candidate.item.has_external_ids):
            return await self.delete_candidates([candidate])

        if match_ids is None:
            try:
                match_ids = [m.id for m in await self.sequencer.find_matches(candidate)]
            except Exception as e:
                logger.warning(f"Could not check cross-server matches for candidate {candidate.id}, "
                               f"deleting from its own server only: {e}")
                match_ids = []
        return await self.cross_server_delete(candidate, match_ids)

    async def cross_server_delete(self, candidate: Candidate, match_ids: Iterable[int]) -> Optional[OperationResult]:
        self.result = None
        self.operating = True
        outcome = await self.sequencer.delete(candidate, match_ids)
        if self._token.cancelled:
            return None
        self.operating = False

        title = candidate.item.title if candidate.item else ""
        result = self.sequencer.classify(outcome, title)
        await self._set_result(result)
        if outcome.total_deleted > 0 or result.kind != ERROR:
            await self._after_change()
        return result

    # --- Exclusions ---

    async def exclude_selected(self) -> Optional[OperationResult]:
        return await self.exclude(self.selection.selected_items(self.items))

    async def exclude(self, candidates: Iterable[Candidate]) -> Optional[OperationResult]:
        candidates = list(candidates)
        if not candidates:
            raise ValidationError("No candidates selected")
        self.result = None
        self.operating = True
        try:
            await self.client.exclude_items(self.rule.id, [c.library_item_id for c in candidates])
        except Exception as e:
            logger.error(f"Bulk exclude failed: {e}")
            if self._token.cancelled:
                return None
            result = OperationResult(kind=ERROR, message="Failed to exclude items")
        else:
            if self._token.cancelled:
                return None
            result = OperationResult(kind=SUCCESS, message=f"Excluded {plural(len(candidates), 'item')} from this rule")
        finally:
            if not self._token.cancelled:
                self.operating = False

        await self._set_result(result)
        if result.kind == SUCCESS:
            await self._after_change()
        return result

    def close(self):
        self._token.cancel()
        self.coordinator.cancel()


class ExclusionsView:
    """Items excluded from a rule, with bulk removal."""

    def __init__(self, client, rule: MaintenanceRule, per_page: Optional[int] = None):
        self.client = client
        self.rule = rule
        self.page_number = 1
        self.per_page = per_page or settings.CANDIDATES_PER_PAGE
        self.search = ""
        self.page: Optional[ExclusionsPage] = None
        self.selection = Selection(lambda e: e.library_item_id)
        self._token = CancelToken()

    def _scope(self):
        return (self.rule.id, self.page_number, self.per_page, self.search)

    async def refresh(self) -> Optional[ExclusionsPage]:
        self.selection.set_scope(self._scope())
        page = await self.client.list_exclusions(self.rule.id, self.page_number, self.per_page, self.search)
        if self._token.cancelled:
            return None
        self.page = page
        return page

    async def set_page(self, page: int):
        self.page_number = max(1, page)
        await self.refresh()

    async def set_search(self, search: str):
        self.search = search.strip()
        self.page_number = 1
        await self.refresh()

    async def remove_selected(self) -> Optional[OperationResult]:
        ids = sorted(self.selection.selected)
        if not ids:
            raise ValidationError("No exclusions selected")
        try:
            await self.client.remove_exclusions(self.rule.id, ids)
        except Exception as e:
            logger.error(f"Remove exclusions failed: {e}")
            if self._token.cancelled:
                return None
            return OperationResult(kind=ERROR, message="Failed to remove exclusions")
        if self._token.cancelled:
            return None
        self.selection.clear()
        await self.refresh()
        return OperationResult(kind=SUCCESS, message=f"Removed {plural(len(ids), 'exclusion')}")

    def close(self):
        self._token.cancel()


class MaintenanceService:
    def __init__(self, client: Optional[StreamMonClient] = None,
                 on_rule_synced: Optional[Callable[[int], Any]] = None,
                 on_error: Optional[Callable[[str], Any]] = None,
                 poll_interval: Optional[float] = None):
        self.client = client or StreamMonClient()
        self.lookup = LibraryLookup()
        self.table = OperationTable()
        self.launcher = SyncLauncher(self.client)
        self.poller = SyncStatusPoller(
            self.client, self.table, SyncStatusEngine(self.lookup),
            interval=poll_interval,
            on_complete=self._on_sync_complete,
            on_error=self._on_sync_error,
        )
        self.on_rule_synced = on_rule_synced
        self.on_error = on_error
        self.rules: List[MaintenanceRule] = []
        self.operation_error: Optional[str] = None
        self.views: List[Any] = []

        # Link the operation table to the status app
        server.table = self.table

    async def setup(self):
        await self.lookup.refresh(self.client)
        await self.refresh_rules()

    async def refresh_rules(self, server_id: Optional[int] = None,
                            library_id: Optional[str] = None) -> List[MaintenanceRule]:
        self.rules = await self.client.list_rules(server_id, library_id)
        return self.rules

    async def _report_error(self, message: str):
        self.operation_error = message
        await dispatch(self.on_error, message)

    # --- Sync & evaluate ---

    def sync_message(self, rule_id: int) -> Optional[str]:
        op = self.table.get(rule_id)
        return op.message if op else None

    async def sync_and_evaluate(self, rule: MaintenanceRule) -> List[str]:
        """Starts (or joins) the syncs a rule depends on and tracks them until they finish."""
        if rule.id in self.table:
            logger.info(f"Rule {rule.id} is already syncing")
            return self.table.get(rule.id).sync_keys
        self.operation_error = None
        try:
            keys = await self.launcher.launch(rule.libraries)
        except (SyncStartError, ValidationError) as e:
            await self._report_error(str(e))
            raise
        self.poller.track(rule.id, keys, len(self.launcher.distinct_keys(rule.libraries)))
        logger.info(f"Sync & evaluate started for rule {rule.id} ({rule.name}) on {len(keys)} libraries")
        return keys

    async def _on_sync_complete(self, rule_id: int):
        try:
            await self.refresh_rules()
        except Exception as e:
            logger.warning(f"Failed to refresh rules after sync: {e}")
        await dispatch(self.on_rule_synced, rule_id)

    async def _on_sync_error(self, rule_id: int, message: str):
        await self._report_error(message)

    # --- Rule actions ---

    async def toggle_rule(self, rule: MaintenanceRule) -> bool:
        self.operation_error = None
        try:
            await self.client.update_rule(rule, enabled=not rule.enabled)
        except Exception as e:
            logger.error(f"Failed to toggle rule {rule.id}: {e}")
            await self._report_error(f'Failed to {"disable" if rule.enabled else "enable"} rule "{rule.name}"')
            return False
        await self.refresh_rules()
        return True

    async def delete_rule(self, rule: MaintenanceRule) -> bool:
        self.operation_error = None
        try:
            await self.client.delete_rule(rule.id)
        except Exception as e:
            logger.error(f"Failed to delete rule {rule.id}: {e}")
            await self._report_error(f'Failed to delete rule "{rule.name}"')
            return False
        await self.refresh_rules()
        return True

    async def evaluate_rule(self, rule: MaintenanceRule) -> bool:
        try:
            await self.client.evaluate_rule(rule.id)
        except Exception as e:
            logger.error(f"Failed to evaluate rule {rule.id}: {e}")
            await self._report_error(f'Failed to evaluate rule "{rule.name}"')
            return False
        await self.refresh_rules()
        return True

    # --- Views ---

    def candidates_view(self, rule: MaintenanceRule, **kwargs) -> CandidatesView:
        view = CandidatesView(self.client, rule, **kwargs)
        self.views.append(view)
        return view

    def exclusions_view(self, rule: MaintenanceRule) -> ExclusionsView:
        view = ExclusionsView(self.client, rule)
        self.views.append(view)
        return view

    def close_view(self, view):
        view.close()
        if view in self.views:
            self.views.remove(view)

    # --- Lifecycle ---

    async def serve_status(self):
        if not settings.HTTP_SERVER_ENABLED:
            return
        config = uvicorn.Config(server.app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
        await uvicorn.Server(config).serve()

    async def close(self):
        for view in list(self.views):
            self.close_view(view)
        await self.poller.stop()
        self.table.clear()
        await self.client.aclose()
