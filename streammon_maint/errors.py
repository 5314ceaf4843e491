from typing import Optional


class MaintenanceError(Exception):
    """Base class for errors raised by the maintenance client."""


class ValidationError(MaintenanceError):
    """Rejected locally before anything is sent to the backend."""


class ApiError(MaintenanceError):
    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        self.message = message or f"HTTP {status}"
        super().__init__(self.message)

    @property
    def is_conflict(self) -> bool:
        return self.status == 409


class SyncStartError(MaintenanceError):
    pass
