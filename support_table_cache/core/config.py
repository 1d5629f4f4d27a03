"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Cache settings driven entirely by environment variables.

    Every field is read from ``SUPPORT_TABLE_CACHE_<FIELD>``.
    """

    # Cache Configuration
    cache_backend: Literal["memory", "redis", "ambient", "none"] = Field(default="memory")
    cache_disabled: bool = Field(default=False)
    cache_ttl: Optional[float] = Field(default=None, gt=0)
    redis_url: Optional[str] = Field(default=None)
    redis_namespace: str = Field(default="support_table_cache", min_length=1)

    # Database Configuration
    database_url: str = Field(default="sqlite://")
    database_echo: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v):
        if v and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("redis_url must use the redis://, rediss:// or unix:// scheme")
        return v

    @property
    def is_in_memory_database(self) -> bool:
        """Check if the record store lives in a private in-memory SQLite database."""
        return self.database_url in ("sqlite://", "sqlite:///:memory:")

    model_config = {
        "env_prefix": "SUPPORT_TABLE_CACHE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
