import logging
import httpx
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional
from ..config import settings
from ..errors import ApiError
from ..models import (
    CandidatesPage,
    ExclusionsPage,
    Library,
    LibraryItem,
    MaintenanceRule,
    SyncJobState,
)

logger = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error")
    return None


def raise_for_api_status(resp: httpx.Response):
    if resp.is_success:
        return
    raise ApiError(resp.status_code, _error_message(resp))


class StreamMonClient:
    """Thin async wrapper over the StreamMon maintenance REST endpoints."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        token = token if token is not None else settings.STREAMMON_TOKEN
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=(base_url or settings.STREAMMON_BASE_URL).rstrip('/'),
            headers=headers,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self):
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs):
        resp = await self.client.request(method, url, **kwargs)
        raise_for_api_status(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # --- Sync ---

    async def start_sync(self, server_id: int, library_id: str):
        """Raises ApiError with status 409 if a sync for this library is already running."""
        await self._request("POST", "/api/maintenance/sync",
                            json={"server_id": server_id, "library_id": library_id})

    async def get_sync_status(self) -> Dict[str, SyncJobState]:
        data = await self._request("GET", "/api/maintenance/sync/status") or {}
        return {key: SyncJobState.model_validate(state) for key, state in data.items()}

    # --- Rules ---

    async def list_rules(self, server_id: Optional[int] = None,
                         library_id: Optional[str] = None) -> List[MaintenanceRule]:
        params = {}
        if server_id:
            params["server_id"] = server_id
        if library_id:
            params["library_id"] = library_id
        data = await self._request("GET", "/api/maintenance/rules", params=params) or {}
        return [MaintenanceRule.model_validate(r) for r in data.get("rules", [])]

    async def update_rule(self, rule: MaintenanceRule, enabled: Optional[bool] = None):
        payload = {
            "name": rule.name,
            "criterion_type": rule.criterion_type,
            "parameters": rule.parameters,
            "enabled": rule.enabled if enabled is None else enabled,
            "libraries": [lib.model_dump() for lib in rule.libraries],
        }
        await self._request("PUT", f"/api/maintenance/rules/{rule.id}", json=payload)

    async def delete_rule(self, rule_id: int):
        await self._request("DELETE", f"/api/maintenance/rules/{rule_id}")

    async def evaluate_rule(self, rule_id: int):
        await self._request("POST", f"/api/maintenance/rules/{rule_id}/evaluate")

    # --- Candidates & exclusions ---

    async def list_candidates(self, rule_id: int, params: Dict) -> CandidatesPage:
        data = await self._request("GET", f"/api/maintenance/rules/{rule_id}/candidates", params=params)
        return CandidatesPage.model_validate(data or {})

    async def list_exclusions(self, rule_id: int, page: int = 1, per_page: int = 25,
                              search: str = "") -> ExclusionsPage:
        params = {"page": page, "per_page": per_page}
        if search:
            params["search"] = search
        data = await self._request("GET", f"/api/maintenance/rules/{rule_id}/exclusions", params=params)
        return ExclusionsPage.model_validate(data or {})

    async def exclude_items(self, rule_id: int, library_item_ids: Iterable[int]):
        await self._request("POST", f"/api/maintenance/rules/{rule_id}/exclusions",
                            json={"library_item_ids": list(library_item_ids)})

    async def remove_exclusions(self, rule_id: int, library_item_ids: Iterable[int]):
        await self._request("POST", f"/api/maintenance/rules/{rule_id}/exclusions/bulk-remove",
                            json={"library_item_ids": list(library_item_ids)})

    # --- Deletion ---

    @asynccontextmanager
    async def bulk_delete_stream(self, candidate_ids: List[int]) -> AsyncIterator[httpx.Response]:
        """Opens the streamed bulk delete; the response body is an SSE stream."""
        timeout = httpx.Timeout(settings.REQUEST_TIMEOUT_SECONDS,
                                read=settings.STREAM_READ_TIMEOUT_SECONDS)
        async with self.client.stream(
            "POST",
            "/api/maintenance/candidates/bulk-delete",
            json={"candidate_ids": candidate_ids},
            headers={"Accept": "text/event-stream"},
            timeout=timeout,
        ) as resp:
            if not resp.is_success:
                await resp.aread()
                raise_for_api_status(resp)
            yield resp

    async def get_cross_server_matches(self, candidate_id: int) -> List[LibraryItem]:
        """Items sharing the candidate's external ids. Includes the source item itself."""
        data = await self._request("GET", f"/api/maintenance/candidates/{candidate_id}/cross-server") or []
        return [LibraryItem.model_validate(i) for i in data]

    async def delete_library_item(self, library_item_id: int, source_item_id: int):
        await self._request("DELETE", f"/api/maintenance/library-items/{library_item_id}",
                            params={"source_item_id": source_item_id})

    async def delete_candidate(self, candidate_id: int):
        await self._request("DELETE", f"/api/maintenance/candidates/{candidate_id}")

    # --- Libraries ---

    async def list_libraries(self) -> List[Library]:
        data = await self._request("GET", "/api/libraries") or {}
        return [Library.model_validate(lib) for lib in data.get("libraries", [])]
