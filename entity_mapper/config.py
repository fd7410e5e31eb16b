from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ENTITY_MAPPER_", case_sensitive=False)

    database_url: Optional[str] = Field(default=None, description="SQLAlchemy async database URL")
    echo: bool = Field(default=False, description="Echo SQL emitted by the SQLAlchemy engine")
    relation_batch_size: int = Field(default=100, ge=1, description="Parents per batched relation query")
    run_hooks: bool = Field(default=True, description="Run lifecycle hooks unless an operation opts out")
    concurrent_relations: bool = Field(
        default=False, description="Load distinct relation names concurrently"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
