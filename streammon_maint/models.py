from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

PHASE_ITEMS = "items"
PHASE_HISTORY = "history"
PHASE_ENRICHING = "enriching"
PHASE_EVALUATING = "evaluating"
PHASE_DONE = "done"
PHASE_ERROR = "error"

TERMINAL_PHASES = (PHASE_DONE, PHASE_ERROR)


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SyncJobState(WireModel):
    phase: str
    current: Optional[int] = None
    total: Optional[int] = None
    error: Optional[str] = None
    library: Optional[str] = None
    synced: Optional[int] = None
    deleted: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.phase not in TERMINAL_PHASES


class RuleLibrary(WireModel):
    server_id: int
    library_id: str


class MaintenanceRule(WireModel):
    id: int
    name: str
    criterion_type: str
    media_type: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    libraries: List[RuleLibrary] = Field(default_factory=list)
    candidate_count: int = 0
    exclusion_count: int = 0


class Library(WireModel):
    id: str
    server_id: int
    server_name: str = ""
    server_type: Optional[str] = None
    name: str
    type: Optional[str] = None


class LibraryItem(WireModel):
    id: int
    server_id: int
    library_id: str
    item_id: str = ""
    media_type: Optional[str] = None
    title: str = ""
    year: Optional[int] = None
    video_resolution: Optional[str] = None
    file_size: int = 0
    tmdb_id: Optional[str] = None
    tvdb_id: Optional[str] = None
    imdb_id: Optional[str] = None
    added_at: Optional[str] = None

    @property
    def has_external_ids(self) -> bool:
        return bool(self.tmdb_id or self.tvdb_id or self.imdb_id)


class Candidate(WireModel):
    id: int
    rule_id: Optional[int] = None
    library_item_id: int
    reason: str = ""
    item: Optional[LibraryItem] = None
    other_copies: List[RuleLibrary] = Field(default_factory=list)

    @property
    def file_size(self) -> int:
        return self.item.file_size if self.item else 0


class CandidatesPage(WireModel):
    items: List[Candidate] = Field(default_factory=list)
    total: int = 0
    total_size: int = 0
    exclusion_count: int = 0


class Exclusion(WireModel):
    id: int
    rule_id: Optional[int] = None
    library_item_id: int
    excluded_by: str = ""
    excluded_at: Optional[str] = None
    item: Optional[LibraryItem] = None


class ExclusionsPage(WireModel):
    items: List[Exclusion] = Field(default_factory=list)
    total: int = 0


class DeleteProgress(WireModel):
    current: int = 0
    total: int = 0
    title: str = ""
    status: str = "deleting"  # deleting, deleted, failed, skipped
    deleted: int = 0
    failed: int = 0
    skipped: int = 0
    total_size: int = 0

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.current / self.total * 100)


class BulkDeleteError(WireModel):
    candidate_id: Optional[int] = None
    title: str = ""
    error: str = ""


class BulkDeleteResult(WireModel):
    deleted: int = 0
    failed: int = 0
    skipped: int = 0  # excluded since page load
    total_size: int = 0
    errors: List[BulkDeleteError] = Field(default_factory=list)

    @property
    def accounted(self) -> int:
        return self.deleted + self.failed + self.skipped


class CrossServerFailure(BaseModel):
    library_item_id: int
    source: bool = False
    error: str


class CrossServerDeleteOutcome(BaseModel):
    source_deleted: bool = False
    cross_deleted: int = 0
    cross_failed: int = 0
    requested_matches: int = 0
    failures: List[CrossServerFailure] = Field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return (1 if self.source_deleted else 0) + self.cross_deleted

    @property
    def total_failed(self) -> int:
        return (0 if self.source_deleted else 1) + self.cross_failed

    @property
    def total_requested(self) -> int:
        return 1 + self.requested_matches


class OperationResult(BaseModel):
    kind: str  # success, partial, error
    message: str
    errors: List[BulkDeleteError] = Field(default_factory=list)
