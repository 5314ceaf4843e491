from typing import Optional
from .models import (
    SyncJobState,
    PHASE_ITEMS,
    PHASE_HISTORY,
    PHASE_ENRICHING,
    PHASE_EVALUATING,
    PHASE_DONE,
    PHASE_ERROR,
)

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def format_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 B"
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{int(size)} B"
    return f"{size:.1f} {_SIZE_UNITS[unit]}"


def format_count(n: int) -> str:
    return f"{n:,}"


def format_sync_progress(state: SyncJobState, library_name: Optional[str] = None) -> str:
    prefix = f"{library_name}: " if library_name else ""
    current = state.current or 0
    if state.phase == PHASE_ITEMS:
        return f"{prefix}Scanning {current}/{state.total}" if state.total else f"{prefix}Scanning..."
    if state.phase == PHASE_HISTORY:
        return f"{prefix}History {current}/{state.total}" if state.total else f"{prefix}Fetching history..."
    if state.phase == PHASE_ENRICHING:
        return f"{prefix}Enriching {current}/{state.total}" if state.total else f"{prefix}Enriching..."
    if state.phase == PHASE_EVALUATING:
        return f"{prefix}Evaluating {current}/{state.total}" if state.total else f"{prefix}Evaluating..."
    if state.phase == PHASE_ERROR:
        return f"{prefix}Error: {state.error}" if state.error else f"{prefix}Sync error"
    if state.phase == PHASE_DONE:
        return f"{prefix}Sync complete"
    return f"{prefix}Syncing..."


def plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"
