from typing import Tuple

SEPARATOR = "-"


def make_sync_key(server_id: int, library_id: str) -> str:
    """Encode a (server, library) pair as the key used by the sync status endpoint."""
    if server_id < 0:
        raise ValueError(f"server_id must be non-negative, got {server_id}")
    return f"{server_id}{SEPARATOR}{library_id}"


def parse_sync_key(key: str) -> Tuple[int, str]:
    """
    Inverse of make_sync_key. The server id is a decimal prefix, so the first
    separator is always the split point and library ids may contain it.
    """
    idx = key.find(SEPARATOR)
    prefix = key[:idx]
    if idx <= 0 or not prefix.isdigit():
        raise ValueError(f"malformed sync key: {key!r}")
    return int(prefix), key[idx + 1:]
