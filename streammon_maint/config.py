from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # StreamMon backend
    STREAMMON_BASE_URL: str = "http://localhost:7935"
    STREAMMON_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: int = 30
    STREAM_READ_TIMEOUT_SECONDS: int = 300  # bulk deletes are paced server-side

    # Sync tracking
    SYNC_POLL_INTERVAL_SECONDS: float = 1.5

    # Candidates view
    CANDIDATES_PER_PAGE: int = 25

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
