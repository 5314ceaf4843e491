import asyncio
import logging
from typing import Any, Callable, Iterable, List, Optional
from .errors import ValidationError
from .formatting import format_size, plural
from .lifecycle import CancelToken, dispatch
from .models import (
    BulkDeleteError,
    BulkDeleteResult,
    Candidate,
    CrossServerDeleteOutcome,
    CrossServerFailure,
    DeleteProgress,
    LibraryItem,
    OperationResult,
)
from .sse import ProgressStreamReader

logger = logging.getLogger(__name__)

SUCCESS = "success"
PARTIAL = "partial"
ERROR = "error"


def classify_delete(deleted: int, failed: int, skipped: int, requested: int,
                    total_size: Optional[int] = None,
                    errors: Iterable[BulkDeleteError] = (),
                    retry_hint: bool = False) -> OperationResult:
    """Shared success/partial/error policy for both deletion paths."""
    errors = list(errors)
    hint = " Please refresh and retry." if retry_hint else ""

    if failed == 0 and skipped == 0:
        message = f"Deleted {plural(deleted, 'item')}"
        if total_size is not None:
            message += f" ({format_size(total_size)} reclaimed)"
        return OperationResult(kind=SUCCESS, message=message)

    if deleted > 0:
        message = f"Deleted {deleted} of {requested} items."
        if failed > 0:
            message += f" {failed} failed."
        if skipped > 0:
            message += f" {skipped} skipped (excluded)."
        return OperationResult(kind=PARTIAL, message=message + hint, errors=errors)

    if failed == 0:
        return OperationResult(
            kind=PARTIAL,
            message=f"All {skipped} items were skipped (excluded since page load)",
            errors=errors,
        )

    message = "Failed to delete items"
    if retry_hint:
        message += ". Please refresh and retry."
    return OperationResult(kind=ERROR, message=message, errors=errors)


def reconcile(result: BulkDeleteResult, requested: int) -> BulkDeleteResult:
    """
    Candidates the server no longer knew about are not in its counts; they are
    reported as skipped. Counts above the request (cross-server copies) stand.
    """
    missing = requested - result.accounted
    if missing > 0:
        logger.warning(f"Bulk delete accounted for {result.accounted} of {requested} candidates, "
                       f"treating {missing} as skipped")
        return result.model_copy(update={"skipped": result.skipped + missing})
    return result


class BulkDeleteCoordinator:
    """
    Drives one streamed bulk delete at a time. Starting a new run cancels the
    previous one; a cancelled run never reports progress or a result.
    """

    def __init__(self, client,
                 on_progress: Optional[Callable[[Optional[DeleteProgress]], None]] = None,
                 on_result: Optional[Callable[[OperationResult], Any]] = None,
                 on_changed: Optional[Callable[[], Any]] = None):
        self.client = client
        self.on_progress = on_progress
        self.on_result = on_result
        self.on_changed = on_changed
        self.progress: Optional[DeleteProgress] = None
        self.last_result: Optional[OperationResult] = None
        self._token: Optional[CancelToken] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._token is not None and not self._token.cancelled

    @property
    def task(self) -> Optional[asyncio.Task]:
        """The run most recently launched with start()."""
        return self._task

    def start(self, candidate_ids: Iterable[int]) -> asyncio.Task:
        self.cancel()
        self._task = asyncio.create_task(self.run(candidate_ids))
        return self._task

    def cancel(self):
        """Aborts the current run; its stream is torn down and it returns None."""
        if self._token is not None:
            self._token.cancel()

    def _set_progress(self, token: CancelToken, progress: Optional[DeleteProgress]):
        if token.cancelled:
            return
        self.progress = progress
        if self.on_progress:
            self.on_progress(progress)

    async def _stream(self, ids: List[int], token: CancelToken) -> Optional[BulkDeleteResult]:
        async with self.client.bulk_delete_stream(ids) as resp:
            reader = ProgressStreamReader(on_progress=lambda p: self._set_progress(token, p), token=token)
            return await reader.read(resp)

    async def run(self, candidate_ids: Iterable[int]) -> Optional[OperationResult]:
        ids = list(dict.fromkeys(candidate_ids))
        if not ids:
            raise ValidationError("No candidates selected")

        if self._token is not None:
            self._token.cancel()
        token = self._token = CancelToken()

        self._set_progress(token, DeleteProgress(total=len(ids), title="Starting..."))
        logger.info(f"Bulk deleting {len(ids)} candidates")

        # Cancelling the token aborts the read and closes the connection
        stream = asyncio.ensure_future(self._stream(ids, token))
        token.on_cancel(stream.cancel)
        try:
            await asyncio.wait([stream])
        except asyncio.CancelledError:
            token.cancel()
            await asyncio.wait([stream])
            raise
        finally:
            self._set_progress(token, None)

        if token.cancelled or stream.cancelled():
            logger.info("Bulk delete cancelled")
            return None

        result: Optional[BulkDeleteResult] = None
        try:
            result = stream.result()
        except Exception as e:
            logger.error(f"Bulk delete failed: {e}")

        if result is None:
            outcome = OperationResult(kind=ERROR, message="Failed to delete items")
        else:
            result = reconcile(result, len(ids))
            outcome = classify_delete(
                result.deleted, result.failed, result.skipped,
                requested=max(len(ids), result.accounted),
                total_size=result.total_size,
                errors=result.errors,
            )
            logger.info(f"Bulk delete finished: deleted={result.deleted} failed={result.failed} "
                        f"skipped={result.skipped}")

        self.last_result = outcome
        if self._token is token:
            self._token = None
        await dispatch(self.on_result, outcome)
        if result is not None and (result.deleted > 0 or outcome.kind != ERROR) and not token.cancelled:
            await dispatch(self.on_changed)
        return outcome


class CrossServerDeleteSequencer:
    """
    Deletes a candidate together with copies of the same title on other
    servers. Copies go first: the source row is what the backend checks each
    copy against, and deleting it cascades that link away.
    """

    def __init__(self, client):
        self.client = client

    async def find_matches(self, candidate: Candidate) -> List[LibraryItem]:
        items = await self.client.get_cross_server_matches(candidate.id)
        return [item for item in items if item.id != candidate.library_item_id]

    async def delete(self, candidate: Candidate, match_ids: Iterable[int]) -> CrossServerDeleteOutcome:
        source_item_id = candidate.library_item_id
        targets = [i for i in dict.fromkeys(match_ids) if i != source_item_id]
        outcome = CrossServerDeleteOutcome(requested_matches=len(targets))

        for item_id in targets:
            try:
                await self.client.delete_library_item(item_id, source_item_id=source_item_id)
                outcome.cross_deleted += 1
            except Exception as e:
                outcome.cross_failed += 1
                outcome.failures.append(CrossServerFailure(library_item_id=item_id, error=str(e)))
                logger.error(f"Cross-server delete of item {item_id} failed: {e}")

        try:
            await self.client.delete_candidate(candidate.id)
            outcome.source_deleted = True
        except Exception as e:
            outcome.failures.append(CrossServerFailure(library_item_id=source_item_id, source=True, error=str(e)))
            logger.error(f"Source candidate {candidate.id} delete failed: {e}")

        logger.info(f"Cross-server delete for candidate {candidate.id}: "
                    f"deleted={outcome.total_deleted} failed={outcome.total_failed}")
        return outcome

    @staticmethod
    def classify(outcome: CrossServerDeleteOutcome, title: str = "") -> OperationResult:
        errors = [
            BulkDeleteError(title=title if f.source else f"{title} (cross-server)".strip(), error=f.error)
            for f in outcome.failures
        ]
        return classify_delete(
            outcome.total_deleted, outcome.total_failed, 0,
            requested=outcome.total_requested,
            errors=errors,
            retry_hint=True,
        )
