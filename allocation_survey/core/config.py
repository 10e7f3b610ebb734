"""Application configuration from environment."""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings loaded from env / .env."""

    app_name: str = "Allocation Survey"
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = False

    # Database (key-value store for resumable sessions)
    database_url: str = "sqlite:///./allocation_survey.db"

    # Admin side-channel token signing
    secret_key: str = "change-me-in-production-use-env"
    admin_token_max_age: int = 60 * 60 * 12  # 12 hours

    # Ingestion endpoint (server side)
    ingest_secret: str = ""
    csv_dir: str = "./data"
    csv_file: str = "responses.csv"

    # Ingestion client (final submission)
    ingest_url: str = "http://localhost:8000/api/appendRow"
    ingest_timeout: float = 15.0

    # Session cookie for respondents
    session_cookie_name: str = "svy_session_id"
    session_cookie_max_age: int = 60 * 60 * 24 * 7  # 7 days

    # Survey design
    default_pool_seed: int = 12345
    pool_tag: str = "ALT"
    total_amount: float = 100000
    currency: str = "USD"
    default_allocation: int = 50
    storage_name: str = "resp_followups_v1"
    reason_required_tags: list[str] = ["BASE"]
    reason_min_length: int = 5
    mid_sanity_index: int = 14

    # CORS for the survey front end; empty list allows any origin
    allowed_origins: list[str] = []

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
