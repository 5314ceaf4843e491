import logging
from typing import Dict, Iterable, Optional
from .models import Library
from .synckey import make_sync_key

logger = logging.getLogger(__name__)


class LibraryLookup:
    """Display names for servers and libraries, keyed the same way as sync jobs."""

    def __init__(self, libraries: Iterable[Library] = ()):
        self.servers: Dict[int, str] = {}
        self.libraries: Dict[str, Library] = {}
        self.load(libraries)

    def load(self, libraries: Iterable[Library]):
        self.servers = {}
        self.libraries = {}
        for lib in libraries:
            self.servers.setdefault(lib.server_id, lib.server_name)
            self.libraries[make_sync_key(lib.server_id, lib.id)] = lib

    async def refresh(self, client):
        try:
            self.load(await client.list_libraries())
        except Exception as e:
            logger.warning(f"Failed to load libraries, names will fall back to ids: {e}")

    def get_server_name(self, server_id: int) -> str:
        return self.servers.get(server_id) or f"Server {server_id}"

    def get_library(self, server_id: int, library_id: str) -> Optional[Library]:
        return self.libraries.get(make_sync_key(server_id, library_id))

    def get_library_name(self, server_id: int, library_id: str) -> str:
        lib = self.get_library(server_id, library_id)
        return lib.name if lib else library_id
