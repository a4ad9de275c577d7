from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Kodi endpoints
    KODI_HOSTS: str = ""  # comma separated, e.g. "localhost,my.friends.server:1234"
    KODI_USERNAME: Optional[str] = None
    KODI_PASSWORD: Optional[str] = None

    # Sync Logic
    SYNC_THRESHOLD_MS: int = 1000
    POLL_INTERVAL_MS: int = 500
    MISMATCH_INTERVAL_MS: int = 1000
    SEEK_SETTLE_MS: int = 2000  # Kodi doesn't report the new position straight after a seek

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8081
    HTTP_SERVER_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: Optional[float] = None  # None waits forever

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def host_list(self) -> List[str]:
        return [h.strip() for h in self.KODI_HOSTS.split(",") if h.strip()]

settings = Settings()
