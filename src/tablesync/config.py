from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tablesync.db"
    credentials_path: Optional[str] = None  # .ionapi-style JSON; the ion_* fields take priority

    # Remote query service credentials (ION_* in the environment or .env)
    ion_tenant: str = ""
    ion_saak: str = ""
    ion_sask: str = ""
    ion_client_id: str = ""
    ion_client_secret: str = ""
    ion_api_url: str = ""
    ion_sso_url: str = ""

    # Remote query polling
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 10
    poll_backoff_factor: float = 1.5
    poll_max_interval_seconds: float = 15.0

    result_page_size: int = 1000
    http_timeout_seconds: float = 30.0

    # One run() invocation stops starting new batches after this long
    invocation_budget_seconds: float = 240.0
    scheduler_interval_minutes: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
