import asyncio
import logging
from typing import Dict, Iterable, List, Tuple
from .errors import ApiError, SyncStartError, ValidationError
from .models import RuleLibrary
from .synckey import make_sync_key

logger = logging.getLogger(__name__)


class SyncLauncher:
    def __init__(self, client):
        self.client = client

    @staticmethod
    def distinct_keys(libraries: Iterable[RuleLibrary]) -> Dict[str, Tuple[int, str]]:
        keys: Dict[str, Tuple[int, str]] = {}
        for lib in libraries:
            keys.setdefault(make_sync_key(lib.server_id, lib.library_id), (lib.server_id, lib.library_id))
        return keys

    async def launch(self, libraries: Iterable[RuleLibrary]) -> List[str]:
        """
        Starts one sync per distinct library and returns the keys now in flight.
        A 409 means the job is already running (possibly for another rule) and is joined.
        """
        entries = list(self.distinct_keys(libraries).items())
        if not entries:
            raise ValidationError("Rule has no libraries to sync")

        results = await asyncio.gather(
            *(self.client.start_sync(server_id, library_id) for _, (server_id, library_id) in entries),
            return_exceptions=True
        )

        keys = []
        for (key, _), result in zip(entries, results):
            if not isinstance(result, BaseException):
                keys.append(key)
            elif isinstance(result, ApiError) and result.is_conflict:
                logger.info(f"Sync for {key} already in progress, joining it")
                keys.append(key)
            elif isinstance(result, Exception):
                logger.error(f"Failed to start sync for {key}: {result}")
            else:
                raise result

        if not keys:
            raise SyncStartError("Failed to start sync for any library")
        return keys
