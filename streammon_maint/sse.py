import logging
from typing import Any, AsyncIterable, Callable, Optional, Tuple
from pydantic import ValidationError
from .lifecycle import CancelToken
from .models import BulkDeleteResult, DeleteProgress

logger = logging.getLogger(__name__)

COMPLETE_EVENT = "complete"


class EventStreamParser:
    """
    Line-level Server-Sent Events parser. Each `data:` line is one frame; an
    `event:` line names the frame that follows it.
    """

    def __init__(self):
        self.current_event: Optional[str] = None

    def feed(self, line: str) -> Optional[Tuple[Optional[str], str]]:
        line = line.rstrip("\r")
        if line.startswith(":"):
            return None
        if line.startswith("event: "):
            self.current_event = line[len("event: "):]
            return None
        if line.startswith("data: "):
            event, self.current_event = self.current_event, None
            return event, line[len("data: "):]
        if line == "":
            self.current_event = None
        return None


async def read_event_stream(lines: AsyncIterable[str],
                            on_data: Optional[Callable[[str], Any]] = None,
                            on_event: Optional[Callable[[str, str], Any]] = None,
                            token: Optional[CancelToken] = None):
    """Feeds lines into the parser and dispatches frames in arrival order until the stream ends or is cancelled."""
    parser = EventStreamParser()
    async for line in lines:
        if token is not None and token.cancelled:
            return
        frame = parser.feed(line)
        if frame is None:
            continue
        event, data = frame
        if event and on_event:
            on_event(event, data)
        elif event is None and on_data:
            on_data(data)


class ProgressStreamReader:
    """
    Consumes a bulk delete SSE response: unlabeled frames are progress
    snapshots, the `complete` frame is the terminal result.
    """

    def __init__(self, on_progress: Optional[Callable[[DeleteProgress], None]] = None,
                 token: Optional[CancelToken] = None):
        self.on_progress = on_progress
        self.token = token or CancelToken()
        self.progress: Optional[DeleteProgress] = None
        self.result: Optional[BulkDeleteResult] = None
        self.skipped_frames = 0

    def _handle_data(self, raw: str):
        try:
            progress = DeleteProgress.model_validate_json(raw)
        except ValidationError:
            self.skipped_frames += 1
            logger.debug(f"Skipping malformed progress frame: {raw[:200]!r}")
            return
        if self.token.cancelled:
            return
        self.progress = progress
        if self.on_progress:
            self.on_progress(progress)

    def _handle_event(self, event: str, raw: str):
        if event != COMPLETE_EVENT:
            logger.debug(f"Ignoring unknown event {event!r}")
            return
        try:
            result = BulkDeleteResult.model_validate_json(raw)
        except ValidationError:
            self.skipped_frames += 1
            logger.debug(f"Skipping malformed complete frame: {raw[:200]!r}")
            return
        if not self.token.cancelled:
            self.result = result

    async def consume(self, lines: AsyncIterable[str]) -> Optional[BulkDeleteResult]:
        await read_event_stream(lines, on_data=self._handle_data, on_event=self._handle_event, token=self.token)
        return None if self.token.cancelled else self.result

    async def read(self, response) -> Optional[BulkDeleteResult]:
        """Reads an httpx streaming response, closing it as soon as the token is cancelled."""
        try:
            return await self.consume(response.aiter_lines())
        finally:
            if self.token.cancelled:
                await response.aclose()
