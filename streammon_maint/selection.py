import math
from typing import Callable, Dict, Generic, Iterable, List, Optional, Set, TypeVar
from pydantic import BaseModel, Field
from .config import settings

T = TypeVar("T")

ASC = "asc"
DESC = "desc"

SORT_FIELDS = ("title", "year", "resolution", "size", "reason", "added_at")


def default_direction(field: str) -> str:
    return ASC if field == "title" else DESC


class SortState(BaseModel):
    field: Optional[str] = None
    direction: str = DESC

    def cycle(self, field: str) -> "SortState":
        """Default direction -> opposite direction -> unsorted."""
        if field not in SORT_FIELDS:
            raise ValueError(f"unknown sort field {field!r}")
        if self.field != field:
            return SortState(field=field, direction=default_direction(field))
        if self.direction == default_direction(field):
            return SortState(field=field, direction=ASC if self.direction == DESC else DESC)
        return SortState()


class CandidateQuery(BaseModel):
    """Everything that determines which candidates are visible."""
    rule_id: int
    page: int = 1
    per_page: int = settings.CANDIDATES_PER_PAGE
    search: str = ""
    sort: SortState = Field(default_factory=SortState)
    server_id: Optional[int] = None
    library_id: Optional[str] = None

    def to_params(self) -> Dict:
        params = {"page": self.page, "per_page": self.per_page}
        if self.search:
            params["search"] = self.search
        if self.sort.field:
            params["sort_by"] = self.sort.field
            params["sort_order"] = self.sort.direction
        if self.server_id and self.library_id:
            params["server_id"] = self.server_id
            params["library_id"] = self.library_id
        return params

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.per_page) if self.per_page > 0 else 0

    def with_rule(self, rule_id: int) -> "CandidateQuery":
        return self.model_copy(update={"rule_id": rule_id, "page": 1, "search": "", "sort": SortState()})

    def with_page(self, page: int) -> "CandidateQuery":
        return self.model_copy(update={"page": max(1, page)})

    def with_per_page(self, per_page: int) -> "CandidateQuery":
        return self.model_copy(update={"per_page": per_page, "page": 1})

    def with_search(self, search: str) -> "CandidateQuery":
        return self.model_copy(update={"search": search.strip(), "page": 1})

    def with_sort(self, field: str) -> "CandidateQuery":
        return self.model_copy(update={"sort": self.sort.cycle(field), "page": 1})

    def clamp_page(self, total: int) -> "CandidateQuery":
        pages = self.total_pages(total)
        if pages > 0 and self.page > pages:
            return self.with_page(pages)
        return self


class Selection(Generic[T]):
    """
    Selected ids scoped to one visible result set. Moving to a different scope
    drops the selection so stale ids never reach a bulk operation.
    """

    def __init__(self, get_id: Callable[[T], int]):
        self.get_id = get_id
        self.selected: Set[int] = set()
        self._scope = None

    def __len__(self) -> int:
        return len(self.selected)

    def __contains__(self, item_id: int) -> bool:
        return item_id in self.selected

    def set_scope(self, scope) -> bool:
        """Returns True if the scope changed and the selection was cleared."""
        if scope == self._scope:
            return False
        self._scope = scope
        self.clear()
        return True

    def toggle(self, item_id: int):
        if item_id in self.selected:
            self.selected.discard(item_id)
        else:
            self.selected.add(item_id)

    def all_visible_selected(self, visible: Iterable[T]) -> bool:
        ids = [self.get_id(item) for item in visible]
        return bool(ids) and all(i in self.selected for i in ids)

    def toggle_all(self, visible: Iterable[T]):
        visible = list(visible)
        ids = {self.get_id(item) for item in visible}
        if self.all_visible_selected(visible):
            self.selected -= ids
        else:
            self.selected |= ids

    def clear(self):
        self.selected = set()

    def selected_items(self, items: Iterable[T]) -> List[T]:
        return [item for item in items if self.get_id(item) in self.selected]


class CandidateSelection(Selection):
    def __init__(self):
        super().__init__(lambda c: c.id)

    def selected_size(self, items) -> int:
        return sum(c.file_size for c in self.selected_items(items))
