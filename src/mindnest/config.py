from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./mindnest.db"
    db_busy_timeout_ms: int = 5000
    db_lock_retries: int = 5
    db_lock_backoff_seconds: float = 0.05

    # Bootstrap values; the settings table wins once it has been written
    server_enabled: bool = True
    server_url: str = "http://localhost:3000"
    server_token: str = ""
    server_device_name: str = ""

    server_timeout_seconds: float = 30.0  # per request
    sync_run_timeout_seconds: float = 600.0  # whole reconciliation run
    sync_max_connections: int = 10
    sync_max_keepalive: int = 10
    sync_candidate_limit: int = 100
    sync_max_concurrency: int = 1  # 1 = strictly sequential pushes
    sync_hour: int = 3

    log_level: str = "INFO"

    class Config:
        env_prefix = "MINDNEST_"
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
