# backend/config/settings.py
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional

class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Blog Backend"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "production"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server event log (batched, one JSON file per day)
    SERVER_LOG_DIR: str = "logs/server"
    ECHO_EVENTS: Optional[bool] = None  # None -> echo only in development
    SHUTDOWN_FLUSH_TIMEOUT: float = 10.0  # Seconds to flush pending events on shutdown

    # Audit event log (written per event)
    AUDIT_LOG_DIR: str = "content/events"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def echo_events_enabled(self) -> bool:
        if self.ECHO_EVENTS is not None:
            return self.ECHO_EVENTS
        return self.ENVIRONMENT.lower() == "development"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
