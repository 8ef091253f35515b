# bookster/config.py
"""Application settings loaded from environment variables."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BOOKSTER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Search index
    meilisearch_url: str = "http://127.0.0.1:7700"
    meilisearch_api_key: Optional[str] = None
    books_index: str = "books"

    # Canonical store; the in-process memory store is used when unset
    database_url: Optional[str] = None

    # Open Library
    open_library_url: str = "https://openlibrary.org/search.json"
    open_library_user_agent: str = "Bookster (catalog service)"
    open_library_limit: int = 20
    http_timeout: float = 10.0

    # Search
    default_limit: int = 20
    max_limit: int = 100
    # Only the first external hit is promoted per search unless this is set.
    promote_all_external_results: bool = False

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
