import logging
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from .formatting import format_sync_progress
from .lookup import LibraryLookup
from .models import SyncJobState, PHASE_ITEMS, PHASE_HISTORY, PHASE_ERROR
from .state import RuleSyncOperation
from .synckey import parse_sync_key

logger = logging.getLogger(__name__)


class TickOutcome(BaseModel):
    ops: Dict[int, RuleSyncOperation] = Field(default_factory=dict)
    completed: List[int] = Field(default_factory=list)  # retired and due a candidate refetch
    failed: List[int] = Field(default_factory=list)  # retired with every key in error
    errors: Dict[int, str] = Field(default_factory=dict)


class SyncStatusEngine:
    def __init__(self, lookup: Optional[LibraryLookup] = None):
        self.lookup = lookup or LibraryLookup()

    def library_name(self, key: str) -> str:
        server_id, library_id = parse_sync_key(key)
        return self.lookup.get_library_name(server_id, library_id)

    @staticmethod
    def pick_active_key(keys: List[str], status: Dict[str, SyncJobState]) -> Optional[str]:
        """Prefer a key still scanning items, then one fetching history, then any active one."""
        active = [k for k in keys if k in status and status[k].active]
        for phase in (PHASE_ITEMS, PHASE_HISTORY):
            for key in active:
                if status[key].phase == phase:
                    return key
        return active[0] if active else None

    def apply(self, ops: Dict[int, RuleSyncOperation], status: Dict[str, SyncJobState]) -> TickOutcome:
        """
        Folds one status snapshot into the tracked operations.
        Every rule sees the same snapshot; the returned ops replace the table wholesale.
        """
        outcome = TickOutcome()

        for rule_id, op in ops.items():
            active_key = self.pick_active_key(op.sync_keys, status)
            if active_key:
                name = self.library_name(active_key) if op.multi_library else None
                outcome.ops[rule_id] = op.model_copy(
                    update={"message": format_sync_progress(status[active_key], name)}
                )
                continue

            error_keys = [k for k in op.sync_keys if k in status and status[k].phase == PHASE_ERROR]
            if error_keys:
                parts = []
                for key in error_keys:
                    err = status[key].error
                    parts.append(f"{self.library_name(key)}: {err}" if err else f"{self.library_name(key)}: Sync error")
                outcome.errors[rule_id] = "; ".join(parts)
                logger.warning(f"Sync for rule {rule_id} finished with errors: {outcome.errors[rule_id]}")

            if len(error_keys) == len(op.sync_keys):
                outcome.failed.append(rule_id)
            else:
                outcome.completed.append(rule_id)
                logger.info(f"Sync for rule {rule_id} finished")

        return outcome
