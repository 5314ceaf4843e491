import logging
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RuleSyncOperation(BaseModel):
    rule_id: int
    sync_keys: List[str] = Field(default_factory=list)
    library_count: int = 0  # distinct libraries on the rule, including any whose sync failed to start
    message: str = "Syncing..."

    @property
    def multi_library(self) -> bool:
        return max(self.library_count, len(self.sync_keys)) > 1


class OperationTable:
    """
    In-flight "sync & evaluate" operations keyed by rule id.
    Written only from the poller task; readers get consistent snapshots.
    """

    def __init__(self):
        self._ops: Dict[int, RuleSyncOperation] = {}

    def __len__(self) -> int:
        return len(self._ops)

    def __contains__(self, rule_id: int) -> bool:
        return rule_id in self._ops

    def get(self, rule_id: int) -> Optional[RuleSyncOperation]:
        return self._ops.get(rule_id)

    def track(self, rule_id: int, sync_keys: List[str], library_count: int = 0) -> RuleSyncOperation:
        op = RuleSyncOperation(rule_id=rule_id, sync_keys=list(sync_keys), library_count=library_count)
        self._ops[rule_id] = op
        logger.debug(f"Tracking rule {rule_id} on keys {op.sync_keys}")
        return op

    def snapshot(self) -> Dict[int, RuleSyncOperation]:
        return dict(self._ops)

    def replace(self, ops: Dict[int, RuleSyncOperation]):
        """Swap in the result of one poll tick in a single step."""
        self._ops = dict(ops)

    def clear(self):
        self._ops = {}

    def messages(self) -> Dict[int, str]:
        return {rule_id: op.message for rule_id, op in self._ops.items()}
