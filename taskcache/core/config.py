from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TASKCACHE_", env_file=".env")

    api_url: str = "http://localhost:4000"
    request_timeout_seconds: float = 10.0
    activity_ttl_seconds: int = 60  # how long a fetched activity list stays fresh
    due_soon_hours: int = 48
    similarity_min_containment_length: int = 2
    similarity_word_overlap_threshold: float = 0.6


@lru_cache
def get_settings() -> Settings:
    return Settings()
